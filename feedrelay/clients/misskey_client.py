"""
Misskey API Client
=================

Thin async client for the Misskey HTTP API shared by the media resolver
and the publisher. Every call carries the access token and is bounded by
the configured request timeout.
"""

import asyncio
import hashlib
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
import certifi

from ..config.settings import FeedRelaySettings, get_settings
from ..utils.exceptions import ErrorCode, ExternalServiceError
from ..utils.logging import get_logger_for_component


@dataclass
class ApiResponse:
    """Status code and decoded JSON body (None when the body is empty)."""
    status: int
    data: Any = None


class MisskeyClient:
    """Async Misskey API client.

    Usage::

        async with MisskeyClient(settings) as client:
            response = await client.call("notes/create", {"text": "hi"})
    """

    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        settings: Optional[FeedRelaySettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize client.

        Args:
            settings: Application settings (default: global settings)
            session: Externally managed aiohttp session
        """
        self.settings = settings or get_settings()
        self.base_url = self.settings.api_base_url
        self.auth_token = self.settings.misskey.auth_token
        self.timeout = aiohttp.ClientTimeout(total=self.settings.limits.request_timeout)
        self.logger = get_logger_for_component("misskey_client")

        self._session = session
        self._owns_session = False
        self.ssl_context = ssl.create_default_context(cafile=certifi.where())

    async def __aenter__(self) -> "MisskeyClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(ssl=self.ssl_context),
                timeout=self.timeout,
                headers={"User-Agent": f"{self.settings.app_name}/{self.settings.version}"},
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._owns_session = False

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("MisskeyClient used outside 'async with' and without a session")
        return self._session

    def endpoint_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def call(self, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> ApiResponse:
        """POST to an API endpoint.

        Args:
            endpoint: Endpoint path below /api, e.g. ``drive/files/find-by-hash``
            payload: JSON body; the access token is added automatically

        Returns:
            ApiResponse with status and decoded body

        Raises:
            ExternalServiceError: On transport failure or timeout
        """
        body = {"i": self.auth_token}
        body.update(payload or {})
        url = self.endpoint_url(endpoint)

        try:
            async with self.session.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {self.auth_token}"},
                timeout=self.timeout,
            ) as response:
                data = None
                if response.status != 204:
                    try:
                        data = await response.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        data = None
                self.logger.debug(f"POST {endpoint} -> {response.status}")
                return ApiResponse(status=response.status, data=data)

        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                f"Timeout calling {endpoint}",
                endpoint=endpoint,
                error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            ) from e
        except aiohttp.ClientError as e:
            raise ExternalServiceError(
                f"Network error calling {endpoint}: {e}",
                endpoint=endpoint,
                error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            ) from e

    async def md5_of(self, url: str) -> str:
        """GET a remote resource and return the hex MD5 of its body.

        The body is hashed chunk by chunk as it streams in, never held whole.

        Raises:
            ExternalServiceError: On transport failure, timeout or non-200 status
        """
        try:
            async with self.session.get(url, timeout=self.timeout) as response:
                if response.status != 200:
                    raise ExternalServiceError(
                        f"Download of {url} returned HTTP {response.status}",
                        endpoint=url,
                    )
                digest = hashlib.md5()
                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    digest.update(chunk)
                return digest.hexdigest()

        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                f"Timeout downloading {url}",
                endpoint=url,
                error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            ) from e
        except aiohttp.ClientError as e:
            raise ExternalServiceError(
                f"Network error downloading {url}: {e}",
                endpoint=url,
                error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            ) from e
