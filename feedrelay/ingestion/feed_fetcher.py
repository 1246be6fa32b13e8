"""
RSS Feed Fetcher
===============

Fetches a single syndication feed over HTTP and parses it with feedparser
into a ParsedFeed. Any network or parse failure surfaces as FeedFetchError.
"""

import asyncio
import calendar
import ssl
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional
from urllib.parse import urlparse

import aiohttp
import certifi
import feedparser

from ..config.settings import FeedRelaySettings, get_settings
from ..utils.exceptions import ErrorCode, FeedFetchError
from ..utils.logging import get_logger_for_component
from .models import FeedEntry, ParsedFeed


class FeedFetcher:
    """Fetches and parses RSS/Atom feeds."""

    def __init__(
        self,
        settings: Optional[FeedRelaySettings] = None,
        timeout: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize feed fetcher.

        Args:
            settings: Application settings (default: global settings)
            timeout: Request timeout in seconds (default from config)
            session: Shared aiohttp session; a private one is opened per fetch otherwise
        """
        self.settings = settings or get_settings()
        self.timeout = timeout or self.settings.limits.request_timeout
        self.logger = get_logger_for_component("feed_fetcher")
        self._session = session

        # SSL context for secure requests
        self.ssl_context = ssl.create_default_context(cafile=certifi.where())

    @asynccontextmanager
    async def get_session(self):
        """Yield the shared session, or a configured short-lived one."""
        if self._session is not None:
            yield self._session
            return

        connector = aiohttp.TCPConnector(ssl=self.ssl_context, limit_per_host=5)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        headers = {
            "User-Agent": f"{self.settings.app_name}/{self.settings.version}",
            "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
        }

        async with aiohttp.ClientSession(
            connector=connector, timeout=timeout, headers=headers
        ) as session:
            yield session

    async def fetch_feed(self, feed_url: str) -> ParsedFeed:
        """Fetch and parse a single feed.

        Args:
            feed_url: URL of the feed

        Returns:
            ParsedFeed with entries in feed order

        Raises:
            FeedFetchError: If the feed is unreachable or unparseable
        """
        self._validate_url(feed_url)

        self.logger.debug(f"Fetching feed: {feed_url}")
        content = await self._download(feed_url)
        return self.parse(content, feed_url)

    async def _download(self, feed_url: str) -> bytes:
        try:
            async with self.get_session() as session:
                async with session.get(
                    feed_url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status == 404:
                        raise FeedFetchError(
                            f"Feed not found (HTTP 404): {feed_url}",
                            feed_url=feed_url,
                            error_code=ErrorCode.FEED_NOT_FOUND,
                        )
                    if response.status in (401, 403):
                        raise FeedFetchError(
                            f"Access denied (HTTP {response.status}): {feed_url}",
                            feed_url=feed_url,
                            error_code=ErrorCode.FEED_ACCESS_DENIED,
                            recoverable=False,
                        )
                    if response.status != 200:
                        raise FeedFetchError(
                            f"HTTP {response.status}: {response.reason}",
                            feed_url=feed_url,
                            error_code=ErrorCode.FEED_NETWORK_ERROR,
                        )
                    return await response.read()

        except asyncio.TimeoutError as e:
            raise FeedFetchError(
                f"Request timeout after {self.timeout}s",
                feed_url=feed_url,
                error_code=ErrorCode.FEED_FETCH_TIMEOUT,
            ) from e
        except aiohttp.ClientError as e:
            raise FeedFetchError(
                f"Fetch error: {e}",
                feed_url=feed_url,
                error_code=ErrorCode.FEED_NETWORK_ERROR,
            ) from e

    def parse(self, content: Any, feed_url: str) -> ParsedFeed:
        """Parse raw feed content.

        Args:
            content: Feed document (bytes or str)
            feed_url: Source feed URL

        Returns:
            ParsedFeed

        Raises:
            FeedFetchError: If the document has no usable entries and is malformed
        """
        feed_data = feedparser.parse(content)

        # Many feeds have minor formatting issues; only fail when nothing was recovered
        if getattr(feed_data, "bozo", False):
            error = getattr(feed_data, "bozo_exception", "Invalid XML structure")
            if not feed_data.entries:
                raise FeedFetchError(
                    f"Feed parse error: {error}",
                    feed_url=feed_url,
                    error_code=ErrorCode.FEED_PARSE_ERROR,
                )
            self.logger.info(f"Feed has parse warnings but contains entries: {feed_url}")

        meta = feed_data.feed
        parsed = ParsedFeed(
            url=feed_url,
            title=meta.get("title", ""),
            description=meta.get("description", meta.get("subtitle", "")),
            link=meta.get("link", ""),
            entries=self._parse_entries(feed_data.entries, feed_url),
        )

        self.logger.info(
            f"Fetched feed '{parsed.title}' ({parsed.link}) with {len(parsed.entries)} entries",
            extra={"feed_url": feed_url},
        )
        return parsed

    def _parse_entries(self, raw_entries: List[Any], feed_url: str) -> List[FeedEntry]:
        entries = []
        for raw in raw_entries:
            try:
                entries.append(
                    FeedEntry(
                        guid=raw.get("id") or raw.get("link") or None,
                        title=raw.get("title", ""),
                        link=raw.get("link"),
                        raw_content=self._extract_content(raw),
                        published_at=self._parse_date(raw),
                    )
                )
            except (TypeError, ValueError) as e:
                self.logger.warning(
                    f"Failed to parse entry '{raw.get('title', 'Unknown')}': {e}",
                    extra={"feed_url": feed_url},
                )
        return entries

    @staticmethod
    def _extract_content(entry: Any) -> str:
        """Prefer the RSS description, then Atom content."""
        summary = entry.get("summary")
        if summary:
            return summary

        content = entry.get("content")
        if isinstance(content, list) and content:
            value = content[0].get("value", "")
            if value:
                return value

        return ""

    @staticmethod
    def _parse_date(entry: Any) -> Optional[datetime]:
        for field_name in ("published_parsed", "updated_parsed", "created_parsed"):
            date_tuple = entry.get(field_name)
            if date_tuple:
                try:
                    # feedparser normalizes to UTC struct_time
                    return datetime.fromtimestamp(calendar.timegm(date_tuple), tz=timezone.utc)
                except (ValueError, OverflowError):
                    continue
        return None

    @staticmethod
    def _validate_url(feed_url: str) -> None:
        try:
            parsed = urlparse(feed_url or "")
            valid = parsed.scheme in ("http", "https") and bool(parsed.netloc)
        except ValueError:
            valid = False
        if not valid:
            raise FeedFetchError(
                f"Invalid feed URL: {feed_url!r}",
                feed_url=feed_url,
                error_code=ErrorCode.FEED_INVALID_URL,
                recoverable=False,
            )
