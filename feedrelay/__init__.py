"""
FeedRelay - RSS to Misskey Relay
================================

Polls RSS feeds and republishes each new entry as a Misskey note, with the
entry's images and videos re-hosted on the instance's drive.

Main Components:
- Configuration: environment variables and .env with Pydantic validation
- Ingestion: feed fetching with feedparser and HTML normalization
- Processing: per-feed dedup tracking and the relay pipeline
- Media: upload-from-URL and drive file id resolution with retry
- Delivery: note publishing
- Scheduler: fixed-interval polling loop
"""

__version__ = "1.0.0"
__author__ = "FeedRelay Development Team"
__description__ = "RSS to Misskey relay"

from .config.settings import get_settings
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import FeedRelayError

__all__ = [
    "get_settings",
    "configure_application_logging",
    "get_logger_for_component",
    "FeedRelayError",
]
