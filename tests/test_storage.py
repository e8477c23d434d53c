"""Tests for the SQL article/source store."""

from datetime import timedelta

import pytest
from conftest import make_article

from feed_relay.exceptions import StoreError


class TestSources:
    def test_add_list_and_update(self, store):
        bbc = store.add_source("BBC", "https://bbc.example/rss", priority=9)
        blog = store.add_source("Blog", "https://blog.example/rss", priority=2)

        sources = store.list_sources()
        assert [s.name for s in sources] == ["BBC", "Blog"]
        assert sources[0].created_at.tzinfo is not None

        assert store.set_priority(blog, 7)
        assert store.get_source(blog).priority == 7
        assert not store.set_priority(999, 1)

        assert store.delete_source(bbc)
        assert store.get_source(bbc) is None
        assert not store.delete_source(bbc)


class TestArticles:
    def test_insert_is_idempotent_per_source_and_link(self, store, now):
        src = store.add_source("A", "https://a.example/rss", priority=5)
        article = make_article(src, "Breaking News", "https://a.example/1")

        assert store.insert_article_if_absent(article)
        assert not store.insert_article_if_absent(article)

        rows = store.not_delivered_since(now - timedelta(days=1), 10)
        assert len(rows) == 1

    def test_same_link_from_other_source_is_a_new_article(self, store, now):
        a = store.add_source("A", "https://a.example/rss")
        b = store.add_source("B", "https://b.example/rss")
        store.insert_article_if_absent(make_article(a, "Same story", "https://shared.example/1"))
        store.insert_article_if_absent(make_article(b, "Same story", "https://shared.example/1"))

        assert len(store.not_delivered_since(now - timedelta(days=1), 10)) == 2

    def test_not_delivered_is_oldest_first_and_respects_priority_cap(self, store, now):
        low = store.add_source("Low", "https://low.example/rss", priority=3)
        high = store.add_source("High", "https://high.example/rss", priority=9)
        store.insert_article_if_absent(make_article(low, "First", "https://low.example/1"))
        store.insert_article_if_absent(make_article(high, "Urgent", "https://high.example/1"))
        store.insert_article_if_absent(make_article(low, "Second", "https://low.example/2"))

        cutoff = now - timedelta(hours=1)
        assert [a.title for a in store.not_delivered_since(cutoff, 10)] == ["First", "Urgent", "Second"]
        assert [a.title for a in store.not_delivered_since(cutoff, 10, below_priority=8)] == ["First", "Second"]
        assert [a.title for a in store.not_delivered_since(cutoff, 1, below_priority=8)] == ["First"]

    def test_lookup_window_uses_published_time(self, store, now):
        src = store.add_source("A", "https://a.example/rss")
        store.insert_article_if_absent(make_article(src, "Old", "https://a.example/old", published_at=now - timedelta(days=3)))
        store.insert_article_if_absent(make_article(src, "Fresh", "https://a.example/new"))

        assert [a.title for a in store.not_delivered_since(now - timedelta(hours=1), 10)] == ["Fresh"]

    def test_high_priority_ordering(self, store, now):
        p9 = store.add_source("P9", "https://p9.example/rss", priority=9)
        p10 = store.add_source("P10", "https://p10.example/rss", priority=10)
        p3 = store.add_source("P3", "https://p3.example/rss", priority=3)
        store.insert_article_if_absent(make_article(p9, "p9 older", "https://p9.example/1"))
        store.insert_article_if_absent(make_article(p9, "p9 newer", "https://p9.example/2"))
        store.insert_article_if_absent(make_article(p10, "p10", "https://p10.example/1"))
        store.insert_article_if_absent(make_article(p3, "p3", "https://p3.example/1"))

        rows = store.high_priority_not_delivered_since(8, now - timedelta(hours=1), 10)
        assert [a.title for a in rows] == ["p10", "p9 newer", "p9 older"]
        assert [a.source_priority for a in rows] == [10, 9, 9]

        assert len(store.high_priority_not_delivered_since(8, now - timedelta(hours=1), 2)) == 2

    def test_mark_delivered(self, store, now):
        src = store.add_source("A", "https://a.example/rss")
        store.insert_article_if_absent(make_article(src, "Story", "https://a.example/1"))
        article = store.not_delivered_since(now - timedelta(hours=1), 1)[0]

        store.mark_delivered(article.id)

        assert store.not_delivered_since(now - timedelta(hours=1), 10) == []
        assert store.articles_since(now - timedelta(hours=1), 10)[0].delivered_at is not None

    def test_mark_unknown_article_fails(self, store):
        with pytest.raises(StoreError):
            store.mark_delivered(12345)


class TestTitleUniqueness:
    def test_only_delivered_articles_count(self, store, now):
        src = store.add_source("A", "https://a.example/rss")
        store.insert_article_if_absent(make_article(src, "Breaking News", "https://a.example/1"))
        cutoff = now - timedelta(days=7)

        assert store.is_title_unique_since("Breaking News", cutoff)

        article = store.not_delivered_since(now - timedelta(hours=1), 1)[0]
        store.mark_delivered(article.id)

        assert not store.is_title_unique_since("Breaking News", cutoff)
        assert not store.is_title_unique_since("breaking news!", cutoff)
        assert store.is_title_unique_since("Weather turns cold", cutoff)

    def test_stays_non_unique_within_window(self, store, now):
        src = store.add_source("A", "https://a.example/rss")
        store.insert_article_if_absent(make_article(src, "Breaking News", "https://a.example/1"))
        store.mark_delivered(store.not_delivered_since(now - timedelta(hours=1), 1)[0].id)

        # More stored articles never make a matched title unique again.
        store.insert_article_if_absent(make_article(src, "Other story", "https://a.example/2"))
        assert not store.is_title_unique_since("Breaking News", now - timedelta(days=7))
        assert not store.is_title_unique_since("Breaking News", now - timedelta(days=1))

    def test_window_expiry(self, store, now):
        src = store.add_source("A", "https://a.example/rss")
        store.insert_article_if_absent(make_article(src, "Breaking News", "https://a.example/1"))
        store.mark_delivered(store.not_delivered_since(now - timedelta(hours=1), 1)[0].id)

        assert store.is_title_unique_since("Breaking News", now + timedelta(minutes=5))
