"""
Media Match Strategies
=====================

Ways of finding a drive file again after an upload-from-URL request. The
drive ingests asynchronously, so every strategy may legitimately answer
"not found yet" (``None``); errors are raised, never returned.
"""

import hashlib
import posixpath
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Union
from urllib.parse import unquote, urlparse

from ..clients.misskey_client import MisskeyClient
from ..config.settings import MediaMatchStrategy
from ..ingestion.models import MediaItem
from ..utils.exceptions import ErrorCode, ExternalServiceError, ResolveError


class MatchStrategy(ABC):
    """Locates an uploaded media item in the drive."""

    name: str = ""

    def __init__(self, not_found_sentinels: Iterable[str] = ("", "0")):
        self.not_found_sentinels = set(not_found_sentinels)

    def upload_fields(self, item: MediaItem) -> Dict[str, Any]:
        """Extra fields sent with the upload-from-url request."""
        return {}

    @abstractmethod
    async def find(self, client: MisskeyClient, item: MediaItem) -> Optional[str]:
        """Return the drive file id, or None when the file is not visible yet."""

    async def _query(self, client: MisskeyClient, item: MediaItem, endpoint: str, payload: Dict[str, Any]):
        try:
            response = await client.call(endpoint, payload)
        except ExternalServiceError as e:
            raise ResolveError(
                f"Drive lookup failed for {item.source_url}: {e}",
                media_url=item.source_url,
            ) from e

        if response.status != 200:
            raise ResolveError(
                f"Drive lookup {endpoint} returned HTTP {response.status}",
                media_url=item.source_url,
                status_code=response.status,
            )
        return response.data if isinstance(response.data, list) else []

    def _first_id(self, files) -> Optional[str]:
        for drive_file in files:
            file_id = str(drive_file.get("id") or "") if isinstance(drive_file, dict) else ""
            if file_id not in self.not_found_sentinels:
                return file_id
        return None


class HashMatchStrategy(MatchStrategy):
    """Match by MD5 of the source bytes via ``drive/files/find-by-hash``."""

    name = MediaMatchStrategy.HASH.value

    async def find(self, client: MisskeyClient, item: MediaItem) -> Optional[str]:
        digest = await self.source_md5(client, item)
        files = await self._query(client, item, "drive/files/find-by-hash", {"md5": digest})
        return self._first_id(files)

    async def source_md5(self, client: MisskeyClient, item: MediaItem) -> str:
        """MD5 of the source file, computed once per item and reused by retries."""
        if item.digest:
            return item.digest
        try:
            item.digest = await client.md5_of(item.source_url)
        except ExternalServiceError as e:
            raise ResolveError(
                f"Could not download {item.source_url} for hashing: {e}",
                media_url=item.source_url,
                error_code=ErrorCode.MEDIA_DOWNLOAD_FAILED,
            ) from e
        return item.digest


class UrlMatchStrategy(MatchStrategy):
    """Match by the file name the drive derives from the source URL."""

    name = MediaMatchStrategy.URL.value

    @staticmethod
    def file_name_for(url: str) -> str:
        path = unquote(urlparse(url).path)
        return posixpath.basename(path.rstrip("/")) or url

    async def find(self, client: MisskeyClient, item: MediaItem) -> Optional[str]:
        files = await self._query(
            client, item, "drive/files/find", {"name": self.file_name_for(item.source_url)}
        )
        return self._first_id(files)


class TagMatchStrategy(MatchStrategy):
    """Attach a unique comment at upload time and look for it among recent files."""

    name = MediaMatchStrategy.TAG.value

    def __init__(self, not_found_sentinels: Iterable[str] = ("", "0"), lookup_limit: int = 20, prefix: str = "feedrelay"):
        super().__init__(not_found_sentinels)
        self.lookup_limit = lookup_limit
        self.prefix = prefix

    def tag_for(self, item: MediaItem) -> str:
        digest = hashlib.sha1(item.source_url.encode("utf-8")).hexdigest()[:16]
        return f"{self.prefix}:{digest}"

    def upload_fields(self, item: MediaItem) -> Dict[str, Any]:
        if not item.tag:
            item.tag = self.tag_for(item)
        return {"comment": item.tag}

    async def find(self, client: MisskeyClient, item: MediaItem) -> Optional[str]:
        tag = item.tag or self.tag_for(item)
        files = await self._query(client, item, "drive/files", {"limit": self.lookup_limit})
        return self._first_id(f for f in files if isinstance(f, dict) and f.get("comment") == tag)


def create_match_strategy(
    strategy: Union[MediaMatchStrategy, str],
    not_found_sentinels: Iterable[str] = ("", "0"),
    tag_lookup_limit: int = 20,
) -> MatchStrategy:
    """Build the match strategy selected by configuration."""
    strategy = MediaMatchStrategy(strategy)
    if strategy == MediaMatchStrategy.URL:
        return UrlMatchStrategy(not_found_sentinels)
    if strategy == MediaMatchStrategy.TAG:
        return TagMatchStrategy(not_found_sentinels, lookup_limit=tag_lookup_limit)
    return HashMatchStrategy(not_found_sentinels)
