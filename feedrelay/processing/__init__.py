"""
FeedRelay Processing Module
==========================

Dedup tracking and the feed-to-note pipeline.
"""

from .dedup_tracker import DedupRegistry, DedupTracker
from .pipeline import FeedOutcome, RelayPipeline

__all__ = [
    'DedupRegistry',
    'DedupTracker',
    'FeedOutcome',
    'RelayPipeline'
]
