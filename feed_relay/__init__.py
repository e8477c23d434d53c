"""
feed_relay

Pulls news from RSS/Atom feeds and relays it to a single Discord channel.

Core ideas:
- Fetch: poll every source in turn → keyword filter → fuzzy title dedup → store
- Notify: auto-publish high-priority sources, plus one pick per tick from the rest
- Each delivered article gets a short AI summary when one can be produced

Example
-------
import asyncio
from feed_relay import ArticleStore, FetchScheduler

store = ArticleStore("sqlite:///feed_relay.db")
store.create_tables()
store.add_source("BBC", "https://feeds.bbci.co.uk/news/rss.xml", priority=9)

asyncio.run(FetchScheduler(store, interval=600, keywords=["sponsored"]).fetch_once())
"""
from .core import FetchScheduler
from .dedup import DedupFilter
from .extractor import ContentExtractor
from .models import PRIORITY_THRESHOLD, Article, Item, PublishStats, Source
from .notifier import NotificationScheduler
from .storage import ArticleStore
from .summarizers import ApiKeyStore, SummarizeOptions, SummaryErrorKind, build_summarizer

__all__ = [
    "Article",
    "ApiKeyStore",
    "ArticleStore",
    "ContentExtractor",
    "DedupFilter",
    "FetchScheduler",
    "Item",
    "NotificationScheduler",
    "PRIORITY_THRESHOLD",
    "PublishStats",
    "Source",
    "SummarizeOptions",
    "SummaryErrorKind",
    "build_summarizer",
]
