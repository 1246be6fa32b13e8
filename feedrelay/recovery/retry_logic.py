"""
FeedRelay Retry Policy
=====================

Bounded retry policy with configurable delay strategies. Used where a
remote call answers "not yet" rather than failing, e.g. looking up a drive
file that the store has not finished ingesting.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterator


SleepFunc = Callable[[float], Awaitable[None]]


class RetryStrategy(str, Enum):
    """Different retry strategy types."""
    FIXED_DELAY = "fixed_delay"              # Fixed interval between retries
    LINEAR_BACKOFF = "linear"               # Linearly increasing delays
    EXPONENTIAL_BACKOFF = "exponential"     # Exponentially increasing delays


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for bounded retry behavior.

    ``max_attempts`` counts every attempt including the first, so the
    default of 2 means one retry.
    """
    max_attempts: int = 2
    base_delay: float = 3.0
    strategy: RetryStrategy = RetryStrategy.FIXED_DELAY
    max_delay: float = 60.0
    exponential_base: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.base_delay * attempt
        elif self.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        else:
            delay = self.base_delay
        return min(delay, self.max_delay)

    def delays(self) -> Iterator[float]:
        """Delays between consecutive attempts (``max_attempts - 1`` values)."""
        for attempt in range(1, self.max_attempts):
            yield self.delay_for(attempt)

    @classmethod
    def from_media_settings(cls, media_settings) -> "RetryPolicy":
        return cls(
            max_attempts=media_settings.resolve_max_attempts,
            base_delay=media_settings.resolve_backoff_seconds,
            strategy=RetryStrategy(media_settings.backoff_strategy),
        )


async def default_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)
