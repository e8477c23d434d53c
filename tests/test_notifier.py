"""Tests for the two-tier notification scheduler."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeSink, StubExtractor, make_article

from feed_relay.exceptions import DeliveryError, ExtractionError, StoreError
from feed_relay.models import PublishStats
from feed_relay.notifier import NotificationScheduler
from feed_relay.summarizers import SummaryErrorKind

CHANNEL = 4242


class FailingDedup:
    async def is_unique(self, title):
        raise StoreError("statement timeout")


def _notifier(store, sink=None, extractor=None, **kwargs):
    kwargs.setdefault("lookup_window", timedelta(minutes=20))
    return NotificationScheduler(
        store,
        extractor or StubExtractor(),
        sink or FakeSink(),
        channel_id=CHANNEL,
        interval=60,
        publish_delay=0,
        **kwargs,
    )


def _undelivered(store, now):
    return {a.title for a in store.not_delivered_since(now - timedelta(days=1), 50)}


class TestRunOnce:
    def test_duplicate_across_priorities_is_published_once(self, store, now):
        high = store.add_source("Wire", "https://wire.example/rss", priority=9)
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        store.insert_article_if_absent(make_article(high, "Breaking News", "https://wire.example/1"))
        store.insert_article_if_absent(make_article(low, "Breaking News", "https://blog.example/1"))
        sink = FakeSink()

        stats = asyncio.run(_notifier(store, sink).run_once())

        assert stats.published == 1
        assert stats.skipped == 1
        assert len(sink.sent) == 1
        assert sink.sent[0][0] == CHANNEL
        assert "wire\\.example" in sink.sent[0][1]
        assert _undelivered(store, now) == set()

    def test_empty_store_is_a_noop(self, store):
        sink = FakeSink()
        stats = asyncio.run(_notifier(store, sink).run_once())

        assert (stats.published, stats.failed, stats.skipped) == (0, 0, 0)
        assert sink.sent == []


class TestHighPrioritySweep:
    def test_publishes_by_priority_then_newest(self, store, now):
        p9 = store.add_source("P9", "https://p9.example/rss", priority=9)
        p10 = store.add_source("P10", "https://p10.example/rss", priority=10)
        store.insert_article_if_absent(make_article(p9, "Ferry strike ends", "https://p9.example/1"))
        store.insert_article_if_absent(make_article(p10, "Election called", "https://p10.example/1"))
        store.insert_article_if_absent(make_article(p9, "Stocks rally", "https://p9.example/2"))
        sink = FakeSink()

        stats = asyncio.run(_notifier(store, sink).publish_high_priority())

        assert stats.published == 3
        titles = [text.split("\n", 1)[0] for _, text in sink.sent]
        assert titles == ["**Election called**", "**Stocks rally**", "**Ferry strike ends**"]

    def test_sweep_is_capped(self, store, now):
        src = store.add_source("Wire", "https://wire.example/rss", priority=10)
        topics = ["Harbour", "Glacier", "Orchard", "Volcano", "Library"]
        for i, topic in enumerate(topics):
            store.insert_article_if_absent(make_article(src, f"{topic} report", f"https://wire.example/{i}"))

        stats = asyncio.run(_notifier(store, sweep_limit=2).publish_high_priority())

        assert stats.published == 2
        assert len(_undelivered(store, now)) == 3

    def test_delivery_failure_leaves_article_undelivered(self, store, now):
        src = store.add_source("Wire", "https://wire.example/rss", priority=9)
        store.insert_article_if_absent(make_article(src, "Election called", "https://wire.example/1"))

        stats = asyncio.run(_notifier(store, FakeSink(fail=True)).publish_high_priority())

        assert stats.failed == 1
        assert stats.published == 0
        assert _undelivered(store, now) == {"Election called"}

    def test_dedup_failure_marks_without_sending(self, store, now):
        src = store.add_source("Wire", "https://wire.example/rss", priority=9)
        store.insert_article_if_absent(make_article(src, "Election called", "https://wire.example/1"))
        sink = FakeSink()

        stats = asyncio.run(_notifier(store, sink, dedup=FailingDedup()).publish_high_priority())

        assert stats.skipped == 1
        assert sink.sent == []
        assert _undelivered(store, now) == set()

    @patch("feed_relay.notifier.asyncio.sleep")
    def test_paces_successful_sends(self, mock_sleep, store):
        async def no_wait(delay):
            return None

        mock_sleep.side_effect = no_wait
        src = store.add_source("Wire", "https://wire.example/rss", priority=9)
        store.insert_article_if_absent(make_article(src, "Election called", "https://wire.example/1"))
        store.insert_article_if_absent(make_article(src, "Stocks rally", "https://wire.example/2"))
        notifier = _notifier(store)
        notifier.publish_delay = 5

        asyncio.run(notifier.publish_high_priority())

        assert [c.args for c in mock_sleep.call_args_list] == [(5,), (5,)]


class TestSinglePick:
    def test_picks_oldest_low_priority_article(self, store, now):
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        high = store.add_source("Wire", "https://wire.example/rss", priority=9)
        store.insert_article_if_absent(make_article(high, "Election called", "https://wire.example/1"))
        store.insert_article_if_absent(make_article(low, "Garden tips", "https://blog.example/1"))
        store.insert_article_if_absent(make_article(low, "Recipe of the week", "https://blog.example/2"))
        sink = FakeSink()

        stats = asyncio.run(_notifier(store, sink).publish_next())

        assert stats.published == 1
        assert sink.sent[0][1].startswith("**Garden tips**")
        assert _undelivered(store, now) == {"Election called", "Recipe of the week"}

    def test_delivery_failure_propagates(self, store, now):
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        store.insert_article_if_absent(make_article(low, "Garden tips", "https://blog.example/1"))

        with pytest.raises(DeliveryError):
            asyncio.run(_notifier(store, FakeSink(fail=True)).publish_next())
        assert _undelivered(store, now) == {"Garden tips"}

    def test_outside_lookup_window_is_ignored(self, store, now):
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        store.insert_article_if_absent(make_article(
            low, "Garden tips", "https://blog.example/1", published_at=now - timedelta(hours=2),
        ))
        sink = FakeSink()

        stats = asyncio.run(_notifier(store, sink, lookup_window=timedelta(minutes=20)).publish_next())

        assert stats.published == 0
        assert sink.sent == []


class TestPublish:
    def test_extraction_failure_sends_title_and_link(self, store):
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        store.insert_article_if_absent(make_article(low, "Garden tips", "https://blog.example/1"))
        sink = FakeSink()
        extractor = StubExtractor(error=ExtractionError(SummaryErrorKind.RATE_LIMITED, "quota"))

        asyncio.run(_notifier(store, sink, extractor).publish_next())

        assert sink.sent == [(CHANNEL, "**Garden tips**\n\nhttps://blog\\.example/1")]

    def test_summary_is_included(self, store):
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        store.insert_article_if_absent(make_article(low, "Garden tips", "https://blog.example/1"))
        sink = FakeSink()

        asyncio.run(_notifier(store, sink, StubExtractor("Water early.")).publish_next())

        assert sink.sent[0][1] == "**Garden tips**\n\nWater early\\.\n\nhttps://blog\\.example/1"

    def test_publish_batch_counts_failures(self, store, now):
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        store.insert_article_if_absent(make_article(low, "Garden tips", "https://blog.example/1"))
        articles = store.articles_since(now - timedelta(days=1), 10)

        stats = asyncio.run(_notifier(store, FakeSink(fail=True)).publish_batch(articles))

        assert (stats.published, stats.failed) == (0, 1)

    def test_publish_batch_counts_unmarked_sends_as_skipped(self, store, now):
        low = store.add_source("Blog", "https://blog.example/rss", priority=3)
        store.insert_article_if_absent(make_article(low, "Garden tips", "https://blog.example/1"))
        store.insert_article_if_absent(make_article(low, "Recipe of the week", "https://blog.example/2"))
        articles = store.articles_since(now - timedelta(days=1), 10)
        sink = FakeSink()

        with patch.object(store, "mark_delivered", side_effect=[StoreError("locked"), None]):
            stats = asyncio.run(_notifier(store, sink).publish_batch(articles))

        assert (stats.published, stats.failed, stats.skipped) == (1, 0, 1)
        assert len(sink.sent) == 2


class TestStart:
    def test_both_passes_run_immediately(self, store):
        notifier = _notifier(store)
        notifier.interval = 3600
        notifier.publish_high_priority = AsyncMock(return_value=PublishStats())
        notifier.publish_next = AsyncMock(side_effect=StoreError("gone"))

        with pytest.raises(StoreError):
            asyncio.run(notifier.start())
        notifier.publish_high_priority.assert_awaited_once()
        notifier.publish_next.assert_awaited_once()

    def test_sweep_store_error_ends_loop(self, store):
        notifier = _notifier(store)
        notifier.interval = 0.01
        notifier.publish_high_priority = AsyncMock(side_effect=[PublishStats(), StoreError("gone")])
        notifier.publish_next = AsyncMock(return_value=PublishStats())

        with pytest.raises(StoreError):
            asyncio.run(notifier.start())
        assert notifier.publish_high_priority.await_count == 2
        notifier.publish_next.assert_awaited_once()

    def test_cancellation_is_distinguished(self, store):
        notifier = _notifier(store)
        notifier.interval = 3600
        notifier.publish_high_priority = AsyncMock(return_value=PublishStats())
        notifier.publish_next = AsyncMock(return_value=PublishStats())

        async def run():
            task = asyncio.create_task(notifier.start())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        notifier.publish_next.assert_awaited_once()
