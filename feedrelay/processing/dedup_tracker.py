"""
Dedup Tracker
=============

Remembers the key of the last entry that was successfully published and
answers whether a candidate entry is newer. State is memory-resident only.

Two key strategies are supported:

- ``GuidDedupStrategy``: an entry is new when its guid differs from the
  last committed guid.
- ``TimestampDedupStrategy``: an entry is new when it was published
  strictly after the last committed timestamp.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Optional, Union

from ..config.settings import DedupKey
from ..ingestion.models import FeedEntry

DedupValue = Union[str, datetime]


class ReadWriteLock:
    """Many concurrent readers or one writer. Waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_lock(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_lock(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class DedupStrategy(ABC):
    """Selects the dedup key of an entry and orders two keys."""

    name: str = ""

    @abstractmethod
    def key_for(self, entry: FeedEntry) -> Optional[DedupValue]:
        """Return the entry's dedup key, or None if the entry has none."""

    @abstractmethod
    def is_new(self, candidate: Optional[DedupValue], last: Optional[DedupValue]) -> bool:
        """Strict comparison: equal values are never new."""


class GuidDedupStrategy(DedupStrategy):
    name = DedupKey.GUID.value

    def key_for(self, entry: FeedEntry) -> Optional[str]:
        return entry.guid or None

    def is_new(self, candidate: Optional[str], last: Optional[str]) -> bool:
        if not candidate:
            return False
        return candidate != last


class TimestampDedupStrategy(DedupStrategy):
    name = DedupKey.TIMESTAMP.value

    def key_for(self, entry: FeedEntry) -> Optional[datetime]:
        return entry.published_at

    def is_new(self, candidate: Optional[datetime], last: Optional[datetime]) -> bool:
        if candidate is None:
            return False
        if last is None:
            return True
        return candidate > last


def create_dedup_strategy(key: Union[DedupKey, str]) -> DedupStrategy:
    """Build the strategy selected by configuration."""
    key = DedupKey(key)
    if key == DedupKey.TIMESTAMP:
        return TimestampDedupStrategy()
    return GuidDedupStrategy()


class DedupTracker:
    """Lock-guarded holder of the last committed dedup key."""

    def __init__(self, strategy: Optional[DedupStrategy] = None, initial: Optional[DedupValue] = None):
        self.strategy = strategy or GuidDedupStrategy()
        self._lock = ReadWriteLock()
        self._last: Optional[DedupValue] = initial

    def get(self) -> Optional[DedupValue]:
        with self._lock.read_lock():
            return self._last

    def set(self, value: DedupValue) -> None:
        with self._lock.write_lock():
            self._last = value

    def is_new(self, candidate: Optional[DedupValue]) -> bool:
        with self._lock.read_lock():
            return self.strategy.is_new(candidate, self._last)

    @property
    def is_empty(self) -> bool:
        return self.get() is None

    def __repr__(self) -> str:
        return f"DedupTracker(strategy={self.strategy.name!r}, last={self.get()!r})"


class DedupRegistry:
    """One tracker per feed URL, created on first use."""

    def __init__(self, strategy: Optional[DedupStrategy] = None):
        self.strategy = strategy or GuidDedupStrategy()
        self._trackers: Dict[str, DedupTracker] = {}
        self._lock = threading.Lock()

    def tracker_for(self, feed_url: str) -> DedupTracker:
        with self._lock:
            tracker = self._trackers.get(feed_url)
            if tracker is None:
                tracker = DedupTracker(self.strategy)
                self._trackers[feed_url] = tracker
            return tracker

    def snapshot(self) -> Dict[str, Optional[DedupValue]]:
        with self._lock:
            trackers = dict(self._trackers)
        return {url: tracker.get() for url, tracker in trackers.items()}
