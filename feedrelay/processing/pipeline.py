"""
Relay Pipeline Orchestrator
==========================

Per feed and per tick: fetch the feed, normalize its newest entry, consult
the dedup tracker, re-host the entry's media, publish the note and, only
after the publish succeeded, commit the entry's dedup key.

Feeds are processed one at a time. A failure in one feed is recorded in
its result and never stops the remaining feeds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence

from ..clients.misskey_client import MisskeyClient
from ..config.settings import FeedRelaySettings, get_settings
from ..delivery.publisher import NotePublisher
from ..ingestion.content_normalizer import ContentNormalizer
from ..ingestion.feed_fetcher import FeedFetcher
from ..ingestion.models import FeedEntry, ParsedFeed
from ..media.media_resolver import MediaResolver
from ..utils.exceptions import FeedRelayError, MediaError, PublishError, handle_exception
from ..utils.logging import PerformanceLogger, get_logger_for_component
from .dedup_tracker import DedupRegistry, create_dedup_strategy


class PipelineStage(str, Enum):
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    CHECKING_DEDUP = "checking_dedup"
    RESOLVING_MEDIA = "resolving_media"
    PUBLISHING = "publishing"
    COMMITTING = "committing"


class FeedOutcome(str, Enum):
    PUBLISHED = "published"      # note created, dedup advanced
    SKIPPED = "skipped"          # newest entry already published
    PRIMED = "primed"            # startup baseline recorded, nothing published
    EMPTY = "empty"              # feed had no usable entry
    DRY_RUN = "dry_run"          # would have published
    ABORTED = "aborted"          # error; dedup unchanged


@dataclass
class FeedRunResult:
    """Result of one feed's pass."""
    feed_url: str
    outcome: FeedOutcome
    stage: PipelineStage
    entry_key: Optional[str] = None
    entry_title: Optional[str] = None
    media_count: int = 0
    media_ids: List[str] = field(default_factory=list)
    note_id: Optional[str] = None
    error: Optional[FeedRelayError] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.outcome != FeedOutcome.ABORTED


@dataclass
class TickResult:
    """Result of one pass over all configured feeds."""
    feed_results: List[FeedRunResult]
    started_at: datetime
    duration_seconds: float = 0.0

    @property
    def published_count(self) -> int:
        return sum(1 for r in self.feed_results if r.outcome == FeedOutcome.PUBLISHED)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.feed_results if not r.success)

    @property
    def errors(self) -> List[str]:
        return [f"{r.feed_url}: {r.error}" for r in self.feed_results if r.error]

    @property
    def success(self) -> bool:
        return self.failed_count == 0


class RelayPipeline:
    """Feed-to-note pipeline orchestrator."""

    def __init__(
        self,
        client: MisskeyClient,
        settings: Optional[FeedRelaySettings] = None,
        fetcher: Optional[FeedFetcher] = None,
        normalizer: Optional[ContentNormalizer] = None,
        resolver: Optional[MediaResolver] = None,
        publisher: Optional[NotePublisher] = None,
        dedup: Optional[DedupRegistry] = None,
        dry_run: bool = False,
    ):
        """Initialize pipeline; every collaborator can be injected.

        Args:
            client: Misskey API client shared by resolver and publisher
            settings: Application settings (default: global settings)
            fetcher: Feed fetcher
            normalizer: Content normalizer
            resolver: Media resolver
            publisher: Note publisher
            dedup: Per-feed dedup registry; it outlives individual ticks
            dry_run: Skip upload, publish and commit
        """
        self.settings = settings or get_settings()
        self.client = client
        self.fetcher = fetcher or FeedFetcher(self.settings)
        self.normalizer = normalizer or ContentNormalizer(self.settings)
        self.resolver = resolver or MediaResolver(client, self.settings)
        self.publisher = publisher or NotePublisher(client, self.settings)
        self.dedup = dedup or DedupRegistry(create_dedup_strategy(self.settings.feeds.dedup_key))
        self.prime_on_start = self.settings.feeds.prime_on_start
        self.dry_run = dry_run
        self.logger = get_logger_for_component("pipeline")

    async def run_once(self, feed_urls: Optional[Sequence[str]] = None) -> TickResult:
        """Process every feed once, sequentially.

        Args:
            feed_urls: Feeds to process (default from config)

        Returns:
            TickResult with one FeedRunResult per feed
        """
        urls = list(feed_urls) if feed_urls is not None else list(self.settings.feeds.urls)
        started_at = datetime.now(timezone.utc)
        results = []

        self.logger.info(f"Starting pipeline pass over {len(urls)} feed(s)")
        for url in urls:
            results.append(await self.process_feed(url))

        tick = TickResult(
            feed_results=results,
            started_at=started_at,
            duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
        )
        self.logger.info(
            f"Pipeline pass complete: {tick.published_count} published, "
            f"{tick.failed_count} failed in {tick.duration_seconds:.2f}s"
        )
        self.logger.debug(f"Dedup state after pass: {self.dedup.snapshot()}")
        return tick

    async def process_feed(self, feed_url: str) -> FeedRunResult:
        """Run the pipeline for one feed. Errors end up in the result, never raised."""
        logger = self.logger.bind(feed_url=feed_url)
        with PerformanceLogger(logger, "feed pass") as perf:
            result = await self._process_feed(feed_url, logger)
        result.duration_seconds = perf.duration or 0.0
        return result

    async def _process_feed(self, feed_url: str, logger) -> FeedRunResult:
        stage = PipelineStage.FETCHING
        tracker = self.dedup.tracker_for(feed_url)
        entry: Optional[FeedEntry] = None
        entry_key = None

        try:
            feed = await self.fetcher.fetch_feed(feed_url)
            entry = self._latest_entry(feed)
            if entry is None:
                logger.info("Feed has no entries")
                return FeedRunResult(feed_url, FeedOutcome.EMPTY, stage)

            stage = PipelineStage.NORMALIZING
            content = self.normalizer.normalize(entry.raw_content)
            if not content.text and not content.has_media:
                content.text = entry.title.strip()
                if not content.text:
                    logger.info("Newest entry has no text, title or media; nothing to publish")
                    return self._result(feed_url, FeedOutcome.EMPTY, stage, entry, entry_key)

            stage = PipelineStage.CHECKING_DEDUP
            entry_key = tracker.strategy.key_for(entry)
            if entry_key is None:
                logger.warning(
                    f"Entry '{entry.title}' has no {tracker.strategy.name} dedup key; skipping"
                )
                return self._result(feed_url, FeedOutcome.EMPTY, stage, entry, entry_key)

            logger = logger.bind(entry_key=str(entry_key))

            if self.prime_on_start and tracker.is_empty:
                tracker.set(entry_key)
                logger.info(f"Recorded startup baseline {entry_key!s}; not publishing")
                return self._result(feed_url, FeedOutcome.PRIMED, stage, entry, entry_key)

            if not tracker.is_new(entry_key):
                logger.debug(f"Entry {entry_key!s} already published")
                return self._result(feed_url, FeedOutcome.SKIPPED, stage, entry, entry_key)

            if self.dry_run:
                logger.info(
                    f"Dry run: would publish '{entry.title}' with {len(content.media)} media item(s)"
                )
                return self._result(
                    feed_url, FeedOutcome.DRY_RUN, stage, entry, entry_key,
                    media_count=len(content.media),
                )

            media_ids = []
            if content.has_media:
                stage = PipelineStage.RESOLVING_MEDIA
                media_ids = await self.resolver.resolve_all(content.media)

            stage = PipelineStage.PUBLISHING
            payload = self.publisher.build_payload(content.text, media_ids)
            published = await self.publisher.publish(payload)

            stage = PipelineStage.COMMITTING
            tracker.set(entry_key)
            logger.info(f"Published '{entry.title}' ({entry_key!s})")

            return self._result(
                feed_url, FeedOutcome.PUBLISHED, stage, entry, entry_key,
                media_count=len(media_ids), media_ids=media_ids, note_id=published.note_id,
            )

        except MediaError as e:
            logger.error(f"Media failed for {e.media_url}; entry not published: {e}")
            return self._result(feed_url, FeedOutcome.ABORTED, stage, entry, entry_key, error=e)
        except PublishError as e:
            logger.error(f"Publish failed (status {e.status_code}): {e}")
            return self._result(feed_url, FeedOutcome.ABORTED, stage, entry, entry_key, error=e)
        except FeedRelayError as e:
            logger.error(f"Feed pass aborted while {stage.value}: {e}")
            return self._result(feed_url, FeedOutcome.ABORTED, stage, entry, entry_key, error=e)
        except Exception as e:
            error = handle_exception(e, logger, f"feed pass ({stage.value})", {"feed_url": feed_url})
            return self._result(feed_url, FeedOutcome.ABORTED, stage, entry, entry_key, error=error)

    def _latest_entry(self, feed: ParsedFeed) -> Optional[FeedEntry]:
        self.logger.debug(f"Feed '{feed.title}' - {feed.description} ({feed.link})")
        return feed.latest_entry

    @staticmethod
    def _result(feed_url, outcome, stage, entry, entry_key, **kwargs) -> FeedRunResult:
        return FeedRunResult(
            feed_url=feed_url,
            outcome=outcome,
            stage=stage,
            entry_key=str(entry_key) if entry_key is not None else None,
            entry_title=entry.title if entry else None,
            **kwargs,
        )
