"""
Relay Pipeline Integration Tests
================================

The full fetch -> normalize -> dedup -> media -> publish -> commit flow with
real normalizer, resolver, publisher and dedup registry. Only the feed
download and the Misskey HTTP layer are replaced.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FEED_A, FEED_B, accepted, ok
from feedrelay.ingestion.feed_fetcher import FeedFetcher
from feedrelay.ingestion.models import FeedEntry, ParsedFeed
from feedrelay.media.media_resolver import MediaResolver
from feedrelay.processing.dedup_tracker import DedupRegistry, TimestampDedupStrategy
from feedrelay.processing.pipeline import FeedOutcome, PipelineStage, RelayPipeline
from feedrelay.utils.exceptions import ErrorCode, FeedFetchError


NOON = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _feed(url, *entries):
    return ParsedFeed(url=url, title="Example", entries=list(entries))


def _entry(guid, body, published_at=NOON):
    return FeedEntry(guid=guid, title=f"Post {guid}", raw_content=body, published_at=published_at)


@pytest.fixture
def fetcher():
    fetcher = MagicMock()
    fetcher.fetch_feed = AsyncMock()
    return fetcher


@pytest.fixture
def pipeline(mock_client, settings, fetcher, fake_sleep):
    resolver = MediaResolver(mock_client, settings, sleep=fake_sleep)
    return RelayPipeline(mock_client, settings, fetcher=fetcher, resolver=resolver)


def _network_calls(mock_client):
    return mock_client.call.await_count + mock_client.md5_of.await_count


@pytest.mark.integration
class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_new_entry_with_image_is_published_once(self, pipeline, fetcher, scripted, mock_client):
        """Empty tracker: upload, resolve, publish, commit; the repeat pass does nothing."""
        fetcher.fetch_feed.return_value = _feed(
            FEED_A, _entry("guid-42", 'New post<br><img src="http://img/1.png">')
        )
        scripted.on("drive/files/upload-from-url", accepted())
        scripted.on("drive/files/find-by-hash", ok([{"id": "file-1"}]))
        scripted.on("notes/create", ok({"createdNote": {"id": "note-1"}}))

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.PUBLISHED
        assert result.stage == PipelineStage.COMMITTING
        assert result.note_id == "note-1"
        assert result.media_ids == ["file-1"]
        assert scripted.calls_to("drive/files/upload-from-url") == [{"url": "http://img/1.png"}]
        assert scripted.calls_to("notes/create") == [
            {"text": "New post", "visibility": "public", "fileIds": ["file-1"]}
        ]
        assert pipeline.dedup.tracker_for(FEED_A).get() == "guid-42"

        calls_before = _network_calls(mock_client)
        second = await pipeline.process_feed(FEED_A)

        assert second.outcome == FeedOutcome.SKIPPED
        assert fetcher.fetch_feed.await_count == 2
        assert _network_calls(mock_client) == calls_before
        print("✅ guid-42 published exactly once")

    @pytest.mark.asyncio
    async def test_text_only_entry(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("g1", "<p>Just text</p>"))
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.PUBLISHED
        assert scripted.calls_to("notes/create") == [{"text": "Just text", "visibility": "public"}]
        assert scripted.calls_to("drive/files/upload-from-url") == []

    @pytest.mark.asyncio
    async def test_only_newest_entry_considered(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(
            FEED_A, _entry("new", "newest"), _entry("old", "older")
        )
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        await pipeline.process_feed(FEED_A)

        assert [c["text"] for c in scripted.calls_to("notes/create")] == ["newest"]
        assert pipeline.dedup.tracker_for(FEED_A).get() == "new"

    @pytest.mark.asyncio
    async def test_media_order_preserved(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(
            FEED_A,
            _entry("g", '<img src="http://img/a.png"><video src="http://vid/b.mp4"></video>'),
        )
        scripted.on("drive/files/upload-from-url", accepted())
        scripted.on("drive/files/find-by-hash", ok([{"id": "id-a"}]), ok([{"id": "id-b"}]))
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        result = await pipeline.process_feed(FEED_A)

        assert result.media_ids == ["id-a", "id-b"]
        note = scripted.calls_to("notes/create")[0]
        assert note["fileIds"] == ["id-a", "id-b"]
        assert note["text"] is None


@pytest.mark.integration
class TestFailureSemantics:

    @pytest.mark.asyncio
    async def test_partial_media_failure_rolls_back(self, pipeline, fetcher, scripted, fake_sleep):
        """Second image never resolves: no publish, tracker unchanged."""
        fetcher.fetch_feed.return_value = _feed(
            FEED_A, _entry("g2", '<img src="http://img/a.png"><img src="http://img/b.png">')
        )
        scripted.on("drive/files/upload-from-url", accepted())
        scripted.on("drive/files/find-by-hash", ok([{"id": "id-a"}]), ok([]))

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.ABORTED
        assert result.stage == PipelineStage.RESOLVING_MEDIA
        assert result.error.error_code == ErrorCode.MEDIA_NOT_FOUND
        assert scripted.calls_to("notes/create") == []
        assert pipeline.dedup.tracker_for(FEED_A).is_empty
        assert fake_sleep.delays == [3.0]

    @pytest.mark.asyncio
    async def test_upload_rejected(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("g", '<img src="http://img/a.png">'))
        scripted.on("drive/files/upload-from-url", ok(status=400))

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.ABORTED
        assert result.error.status_code == 400
        assert scripted.calls_to("notes/create") == []

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_entry_pending(self, pipeline, fetcher, scripted):
        """A rejected publish leaves the entry eligible on the next pass."""
        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("g3", "text"))
        scripted.on("notes/create", ok(status=500), ok({"createdNote": {"id": "n"}}))

        first = await pipeline.process_feed(FEED_A)
        assert first.outcome == FeedOutcome.ABORTED
        assert first.stage == PipelineStage.PUBLISHING
        assert pipeline.dedup.tracker_for(FEED_A).is_empty

        second = await pipeline.process_feed(FEED_A)
        assert second.outcome == FeedOutcome.PUBLISHED
        assert pipeline.dedup.tracker_for(FEED_A).get() == "g3"

    @pytest.mark.asyncio
    async def test_fetch_failure(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.side_effect = FeedFetchError("HTTP 500", feed_url=FEED_A)

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.ABORTED
        assert result.stage == PipelineStage.FETCHING
        assert scripted.calls == []

    @pytest.mark.asyncio
    async def test_empty_feed(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(FEED_A)

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.EMPTY
        assert scripted.calls == []

    @pytest.mark.asyncio
    async def test_one_failing_feed_does_not_block_others(self, pipeline, fetcher, scripted):
        async def fetch(url):
            if url == FEED_A:
                raise FeedFetchError("down", feed_url=url)
            return _feed(url, _entry("b-1", "from b"))

        fetcher.fetch_feed.side_effect = fetch
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        tick = await pipeline.run_once([FEED_A, FEED_B])

        assert [r.outcome for r in tick.feed_results] == [FeedOutcome.ABORTED, FeedOutcome.PUBLISHED]
        assert tick.published_count == 1
        assert tick.failed_count == 1
        assert tick.success is False
        assert len(tick.errors) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained_per_feed(self, pipeline, fetcher, scripted):
        """A non-domain exception in one feed is reported, later feeds still run."""
        async def fetch(url):
            if url == FEED_A:
                raise RuntimeError("boom")
            return _feed(url, _entry("b-1", "from b"))

        fetcher.fetch_feed.side_effect = fetch
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        tick = await pipeline.run_once([FEED_A, FEED_B])

        failed, published = tick.feed_results
        assert failed.outcome == FeedOutcome.ABORTED
        assert failed.stage == PipelineStage.FETCHING
        assert "boom" in str(failed.error)
        assert failed.error.context["feed_url"] == FEED_A
        assert published.outcome == FeedOutcome.PUBLISHED
        assert pipeline.dedup.tracker_for(FEED_A).is_empty

    @pytest.mark.asyncio
    async def test_malformed_feed_url_does_not_stop_pass(self, pipeline, fetcher, scripted):
        async def fetch(url):
            FeedFetcher._validate_url(url)
            return _feed(url, _entry("a-1", "from a"))

        fetcher.fetch_feed.side_effect = fetch
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        tick = await pipeline.run_once(["http://[broken", FEED_A])

        broken, good = tick.feed_results
        assert broken.outcome == FeedOutcome.ABORTED
        assert broken.error.error_code == ErrorCode.FEED_INVALID_URL
        assert good.outcome == FeedOutcome.PUBLISHED
        print("✅ Malformed URL isolated to its own feed")

    @pytest.mark.asyncio
    async def test_empty_body_falls_back_to_title(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(
            FEED_A, FeedEntry(guid="t-1", title="Headline only", raw_content="<p> </p>")
        )
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.PUBLISHED
        assert scripted.calls_to("notes/create") == [{"text": "Headline only", "visibility": "public"}]

    @pytest.mark.asyncio
    async def test_entry_without_text_title_or_media_is_empty(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(FEED_A, FeedEntry(guid="t-2", title="", raw_content=""))

        first = await pipeline.process_feed(FEED_A)
        second = await pipeline.process_feed(FEED_A)

        assert first.outcome == FeedOutcome.EMPTY
        assert second.outcome == FeedOutcome.EMPTY
        assert first.success is True
        assert scripted.calls == []
        assert pipeline.dedup.tracker_for(FEED_A).is_empty


@pytest.mark.integration
class TestDedupBehavior:

    @pytest.mark.asyncio
    async def test_feeds_tracked_independently(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.side_effect = lambda url: _feed(url, _entry("same-guid", url))
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        tick = await pipeline.run_once([FEED_A, FEED_B])

        assert tick.published_count == 2
        assert pipeline.dedup.snapshot() == {FEED_A: "same-guid", FEED_B: "same-guid"}

    @pytest.mark.asyncio
    async def test_timestamp_dedup_is_monotonic(self, mock_client, settings, fetcher, scripted, fake_sleep):
        pipeline = RelayPipeline(
            mock_client,
            settings,
            fetcher=fetcher,
            resolver=MediaResolver(mock_client, settings, sleep=fake_sleep),
            dedup=DedupRegistry(TimestampDedupStrategy()),
        )
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("a", "first", NOON))
        assert (await pipeline.process_feed(FEED_A)).outcome == FeedOutcome.PUBLISHED

        # An older entry resurfacing at the top of the feed is not republished
        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("b", "older", NOON - timedelta(hours=1)))
        assert (await pipeline.process_feed(FEED_A)).outcome == FeedOutcome.SKIPPED
        assert pipeline.dedup.tracker_for(FEED_A).get() == NOON

        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("c", "later", NOON + timedelta(minutes=5)))
        assert (await pipeline.process_feed(FEED_A)).outcome == FeedOutcome.PUBLISHED
        assert pipeline.dedup.tracker_for(FEED_A).get() == NOON + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_entry_without_key_is_skipped(self, pipeline, fetcher, scripted):
        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry(None, "no id"))

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.EMPTY
        assert scripted.calls == []

    @pytest.mark.asyncio
    async def test_prime_on_start(self, mock_client, settings_factory, fetcher, scripted):
        settings = settings_factory(feeds={"prime_on_start": True})
        pipeline = RelayPipeline(mock_client, settings, fetcher=fetcher)
        scripted.on("notes/create", ok({"createdNote": {"id": "n"}}))

        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("old", "backlog"))
        primed = await pipeline.process_feed(FEED_A)

        assert primed.outcome == FeedOutcome.PRIMED
        assert scripted.calls == []
        assert pipeline.dedup.tracker_for(FEED_A).get() == "old"

        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("new", "fresh"))
        assert (await pipeline.process_feed(FEED_A)).outcome == FeedOutcome.PUBLISHED

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, mock_client, settings, fetcher, scripted):
        pipeline = RelayPipeline(mock_client, settings, fetcher=fetcher, dry_run=True)
        fetcher.fetch_feed.return_value = _feed(FEED_A, _entry("g", '<img src="http://img/1.png">'))

        result = await pipeline.process_feed(FEED_A)

        assert result.outcome == FeedOutcome.DRY_RUN
        assert result.media_count == 1
        assert scripted.calls == []
        mock_client.md5_of.assert_not_awaited()
        assert pipeline.dedup.tracker_for(FEED_A).is_empty
