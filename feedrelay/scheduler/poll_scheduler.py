"""
FeedRelay Poll Scheduler
=======================

Runs the relay pipeline on a fixed interval until stopped.

The first pass runs one full interval after start unless
``scheduler.run_on_start`` is set. Passes never overlap: the next wait
starts only after the current pass returned. A pass that raises an
unexpected error is logged and the loop keeps going.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ..config.settings import FeedRelaySettings, get_settings
from ..processing.pipeline import RelayPipeline, TickResult
from ..utils.exceptions import handle_exception
from ..utils.logging import get_logger_for_component


class PollScheduler:
    """Fixed-interval driver for RelayPipeline."""

    def __init__(
        self,
        pipeline: RelayPipeline,
        settings: Optional[FeedRelaySettings] = None,
        feed_urls: Optional[Sequence[str]] = None,
    ):
        self.settings = settings or get_settings()
        self.pipeline = pipeline
        self.feed_urls = list(feed_urls) if feed_urls is not None else list(self.settings.feeds.urls)
        self.interval = self.settings.scheduler.poll_interval_seconds
        self.run_on_start = self.settings.scheduler.run_on_start
        self.logger = get_logger_for_component("scheduler")

        self.ticks_run = 0
        self.last_tick: Optional[TickResult] = None
        self.history: List[TickResult] = []
        self._stop_event = asyncio.Event()

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to exit after the current pass."""
        self.logger.info("Stop requested")
        self._stop_event.set()

    async def run_tick(self) -> Optional[TickResult]:
        """Run a single pass, logging instead of raising unexpected errors."""
        self.ticks_run += 1
        tick_number = self.ticks_run
        self.logger.info(f"Tick {tick_number} started over {len(self.feed_urls)} feed(s)")

        try:
            tick = await self.pipeline.run_once(self.feed_urls)
        except Exception as e:
            handle_exception(e, self.logger, "poll tick", {"tick": tick_number})
            return None

        self.last_tick = tick
        self.history.append(tick)
        del self.history[:-10]

        for error in tick.errors:
            self.logger.warning(f"Tick {tick_number}: {error}")
        return tick

    async def _wait_interval(self) -> bool:
        """Sleep one interval. Returns False if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return True
        return False

    async def run_forever(self, max_ticks: Optional[int] = None) -> int:
        """Poll until stop() is called or ``max_ticks`` passes have run.

        Returns:
            Number of passes run
        """
        started = datetime.now(timezone.utc)
        self.logger.info(
            f"Scheduler started: {len(self.feed_urls)} feed(s), every {self.interval}s"
            f"{', first pass now' if self.run_on_start else ''}"
        )

        ticks = 0
        first = True
        while not self.is_stopping:
            if max_ticks is not None and ticks >= max_ticks:
                break

            if not (first and self.run_on_start):
                if not await self._wait_interval():
                    break
            first = False

            await self.run_tick()
            ticks += 1

        uptime = (datetime.now(timezone.utc) - started).total_seconds()
        self.logger.info(f"Scheduler stopped after {ticks} tick(s), uptime {uptime:.0f}s")
        return ticks
