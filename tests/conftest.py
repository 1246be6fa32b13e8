"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and configuration for FeedRelay tests.

Nothing here talks to the network: the Misskey client is replaced by an
AsyncMock routed per endpoint, and backoff waits go through a recording
sleep instead of asyncio.sleep.
"""

import pytest
import tempfile
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before any imports
os.environ["FEEDRELAY_MISSKEY__HOST"] = "misskey.test"
os.environ["FEEDRELAY_MISSKEY__AUTH_TOKEN"] = "test-token-for-feedrelay"
os.environ["FEEDRELAY_FEEDS__URLS"] = '["https://feeds.test/a.xml"]'
os.environ["FEEDRELAY_LOGGING__FILE_PATH"] = str(
    Path(tempfile.gettempdir()) / "feedrelay_tests" / "feedrelay.log"
)
os.environ["FEEDRELAY_LOGGING__CONSOLE_LOGGING"] = "false"

from feedrelay.clients.misskey_client import ApiResponse
from feedrelay.config.settings import FeedRelaySettings


FEED_A = "https://feeds.test/a.xml"
FEED_B = "https://feeds.test/b.xml"
IMAGE_MD5 = "6f5902ac237024bdd0c176cb93063dc4"


def make_settings(**sections) -> FeedRelaySettings:
    """Build settings with explicit sections; env values fill the rest."""
    values = {
        "misskey": {"host": "misskey.test", "auth_token": "test-token"},
        "feeds": {"urls": [FEED_A]},
        "logging": {"file_path": None, "console_logging": False},
    }
    for name, overrides in sections.items():
        merged = dict(values.get(name, {}))
        merged.update(overrides)
        values[name] = merged
    return FeedRelaySettings(**values)


@pytest.fixture
def settings():
    """Default test settings: one feed, hash matching, 2 lookup attempts."""
    return make_settings()


@pytest.fixture
def settings_factory():
    """Build settings with per-section overrides, e.g. media={"match_strategy": "url"}."""
    return make_settings


class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


class ScriptedMisskey:
    """Endpoint-routed responses for a mocked MisskeyClient.

    Each endpoint maps to a list of ApiResponse (or exceptions) consumed in
    order; the last one repeats once the list is exhausted.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def on(self, endpoint: str, *responses):
        self.routes[endpoint] = list(responses)
        return self

    def calls_to(self, endpoint: str):
        return [payload for name, payload in self.calls if name == endpoint]

    async def __call__(self, endpoint, payload=None):
        self.calls.append((endpoint, dict(payload or {})))
        responses = self.routes.get(endpoint)
        if not responses:
            raise AssertionError(f"Unexpected call to {endpoint}")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def scripted():
    return ScriptedMisskey()


@pytest.fixture
def mock_client(scripted):
    """MisskeyClient double whose call() is driven by the scripted routes."""
    client = MagicMock()
    client.call = AsyncMock(side_effect=scripted.__call__)
    client.md5_of = AsyncMock(return_value=IMAGE_MD5)
    return client


def ok(data=None, status=200):
    return ApiResponse(status=status, data=data)


def accepted():
    return ApiResponse(status=204, data=None)
