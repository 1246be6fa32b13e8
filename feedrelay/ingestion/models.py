"""
FeedRelay Data Models
====================

Feed entries as fetched, and the media references found inside them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FeedEntry(BaseModel):
    """One syndicated item. Immutable once fetched."""
    guid: Optional[str] = Field(default=None, description="Feed-supplied unique id (falls back to link)")
    title: str = Field(default="", description="Entry title")
    link: Optional[str] = Field(default=None, description="Entry permalink")
    raw_content: str = Field(default="", description="Entry body markup as published")
    published_at: Optional[datetime] = Field(default=None, description="Publication time in UTC")

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"FeedEntry({self.guid or self.link or self.title!r})"


class ParsedFeed(BaseModel):
    """A fetched feed with its entries in feed order (newest first by convention)."""
    url: str
    title: str = ""
    description: str = ""
    link: str = ""
    entries: List[FeedEntry] = Field(default_factory=list)

    @property
    def latest_entry(self) -> Optional[FeedEntry]:
        return self.entries[0] if self.entries else None


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass
class MediaItem:
    """An embedded media reference; ``resolved_id`` is filled by the resolver."""
    source_url: str
    kind: MediaKind = MediaKind.IMAGE
    resolved_id: Optional[str] = None
    tag: Optional[str] = None
    digest: Optional[str] = None  # MD5 of the source, set by the hash strategy


@dataclass
class NormalizedContent:
    """Plain-text body plus media references in order of appearance."""
    text: str
    media: List[MediaItem] = field(default_factory=list)

    @property
    def has_media(self) -> bool:
        return bool(self.media)
