"""
FeedRelay Media Module
=====================

Re-hosting of feed media on the Misskey drive.
"""

from .match_strategies import MatchStrategy, create_match_strategy
from .media_resolver import MediaResolver

__all__ = ['MatchStrategy', 'MediaResolver', 'create_match_strategy']
