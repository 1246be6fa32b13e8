"""
Media Resolver
==============

Re-hosts embedded media through the Misskey drive and finds the drive file
id for each item.

Upload-from-URL is accepted (HTTP 204) before the drive has ingested the
file, so the first lookup can miss. A miss is retried according to the
RetryPolicy (by default exactly once after 3 seconds); an error is not
retried. Running out of attempts fails the item, and with it the publish
for the whole entry.
"""

from itertools import chain
from typing import List, Optional

from ..clients.misskey_client import MisskeyClient
from ..config.settings import FeedRelaySettings, get_settings
from ..ingestion.models import MediaItem
from ..recovery.retry_logic import RetryPolicy, SleepFunc, default_sleep
from ..utils.exceptions import ErrorCode, ExternalServiceError, ResolveError, UploadError
from ..utils.logging import get_logger_for_component
from .match_strategies import MatchStrategy, create_match_strategy


UPLOAD_ACCEPTED_STATUS = 204


class MediaResolver:
    """Uploads media by URL and resolves drive file ids."""

    def __init__(
        self,
        client: MisskeyClient,
        settings: Optional[FeedRelaySettings] = None,
        strategy: Optional[MatchStrategy] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = default_sleep,
    ):
        """Initialize media resolver.

        Args:
            client: Misskey API client
            settings: Application settings (default: global settings)
            strategy: Match strategy (default from config)
            policy: Lookup retry policy (default from config)
            sleep: Awaitable used for backoff waits
        """
        self.client = client
        self.settings = settings or get_settings()
        media = self.settings.media
        self.strategy = strategy or create_match_strategy(
            media.match_strategy,
            not_found_sentinels=media.not_found_sentinels,
            tag_lookup_limit=media.tag_lookup_limit,
        )
        self.policy = policy or RetryPolicy.from_media_settings(media)
        self.force_upload = media.force_upload
        self._sleep = sleep
        self.logger = get_logger_for_component("media_resolver")

    async def upload(self, item: MediaItem) -> None:
        """Ask the drive to ingest a media item from its source URL.

        Raises:
            UploadError: If the drive does not accept the request
        """
        payload = {"url": item.source_url}
        if self.force_upload:
            payload["force"] = True
        payload.update(self.strategy.upload_fields(item))

        try:
            response = await self.client.call("drive/files/upload-from-url", payload)
        except ExternalServiceError as e:
            raise UploadError(
                f"Upload request failed for {item.source_url}: {e}",
                media_url=item.source_url,
                error_code=ErrorCode.MEDIA_UPLOAD_FAILED,
            ) from e

        if response.status != UPLOAD_ACCEPTED_STATUS:
            raise UploadError(
                f"Drive rejected upload of {item.source_url} with HTTP {response.status}",
                media_url=item.source_url,
                status_code=response.status,
            )

        self.logger.info(f"Uploaded media {item.source_url}")

    async def resolve(self, item: MediaItem) -> str:
        """Find the drive file id of an uploaded item, tolerating ingest lag.

        Returns:
            The drive file id, also stored on ``item.resolved_id``

        Raises:
            ResolveError: On lookup error or when every attempt misses
        """
        # One lookup per attempt; None marks the last one
        waits = chain(self.policy.delays(), [None])
        for attempt, delay in enumerate(waits, start=1):
            file_id = await self.strategy.find(self.client, item)
            if file_id:
                item.resolved_id = file_id
                self.logger.info(f"Resolved {item.source_url} -> {file_id} (attempt {attempt})")
                return file_id

            if delay is not None:
                self.logger.warning(
                    f"Media not visible yet: {item.source_url}; "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1}/{self.policy.max_attempts})"
                )
                await self._sleep(delay)

        raise ResolveError(
            f"Media {item.source_url} not found after {self.policy.max_attempts} lookup(s)",
            media_url=item.source_url,
            attempts=self.policy.max_attempts,
            error_code=ErrorCode.MEDIA_NOT_FOUND,
        )

    async def upload_and_resolve(self, item: MediaItem) -> str:
        await self.upload(item)
        return await self.resolve(item)

    async def resolve_all(self, items: List[MediaItem]) -> List[str]:
        """Upload and resolve items in order; the first failure propagates.

        Returns:
            Drive file ids in the same order as ``items``
        """
        file_ids = []
        for index, item in enumerate(items, 1):
            self.logger.debug(f"Processing media {index}/{len(items)}: {item.source_url}")
            file_ids.append(await self.upload_and_resolve(item))
        return file_ids
