from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence

from .dedup import DedupFilter
from .exceptions import StoreError
from .fetcher import RSSSource
from .filters import should_skip
from .models import Article, Item, Source
from .normalizer import as_utc, to_article

logger = logging.getLogger(__name__)


class SourceStore(Protocol):
    def list_sources(self) -> List[Source]: ...  # pragma: no cover - interface
    def insert_article_if_absent(self, article: Article) -> bool: ...  # pragma: no cover - interface
    def is_title_unique_since(self, title: str, cutoff: Any) -> bool: ...  # pragma: no cover - interface


class FeedSource(Protocol):
    name: str

    async def fetch(self) -> List[Item]: ...  # pragma: no cover - interface


async def run_periodically(interval: float, job: Callable[[], Awaitable[Any]]) -> None:
    """
    Run `job` now and then on every tick of a fixed-rate timer, forever.

    Runs never overlap: a run that outlasts the interval is followed
    immediately by the next one, and further missed ticks are dropped.
    Exceptions from `job` (cancellation included) end the loop.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    await job()
    tick = 1
    while True:
        delay = start + tick * interval - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)
        tick = max(tick + 1, int((loop.time() - start) // interval) + 1)
        await job()


class FetchScheduler:
    """
    Poll every known source on a fixed interval and store new articles.

    Pipeline per source: fetch → keyword filter → dedup → idempotent insert.
    Sources are fetched one at a time, with a pause between them, so that feed
    hosts never see a burst of requests.
    """

    def __init__(
        self,
        store: SourceStore,
        *,
        interval: float,
        keywords: Optional[Sequence[str]] = None,
        dedup: Optional[DedupFilter] = None,
        source_factory: Callable[[Source], FeedSource] = RSSSource,
        source_timeout: float = 120.0,
        source_delay: float = 30.0,
    ) -> None:
        self.store = store
        self.interval = interval
        self.keywords = list(keywords or [])
        self.dedup = dedup or DedupFilter(store)
        self.source_factory = source_factory
        self.source_timeout = source_timeout
        self.source_delay = source_delay

    async def start(self) -> None:
        """Fetch until cancelled. A StoreError (or any unexpected error) ends the loop."""
        await run_periodically(self.interval, self.fetch_once)

    async def fetch_once(self) -> int:
        """One pass over all sources. Returns the number of newly stored articles."""
        sources = await asyncio.to_thread(self.store.list_sources)
        logger.info("Starting to fetch from %d sources", len(sources))

        stored = 0
        for i, source in enumerate(sources, start=1):
            logger.info("Fetching source %d/%d: %s (priority: %d)", i, len(sources), source.name, source.priority)

            items = await self._fetch_source(source)
            if items is None:
                continue

            stored += await self.process_items(source, items)

            if i < len(sources) and self.source_delay > 0:
                logger.info("Waiting %.0fs before fetching next source", self.source_delay)
                await asyncio.sleep(self.source_delay)

        logger.info("Completed fetching from all sources, %d new articles", stored)
        return stored

    async def _fetch_source(self, source: Source) -> Optional[List[Item]]:
        adapter = self.source_factory(source)
        try:
            items = await asyncio.wait_for(adapter.fetch(), timeout=self.source_timeout)
        except asyncio.TimeoutError:
            logger.error("Fetching source %r timed out after %.0fs", source.name, self.source_timeout)
            return None
        except Exception as e:
            logger.error("Failed to fetch source %r: %s", source.name, e)
            return None

        logger.info("Fetched %d items from source %r", len(items), source.name)
        return items

    async def process_items(self, source: Source, items: Iterable[Item]) -> int:
        stored = 0
        for item in items:
            item = replace(item, published_at=as_utc(item.published_at))

            if should_skip(item, self.keywords):
                logger.info("Item %r (%s) from source %r should be skipped", item.title, item.link, source.name)
                continue

            try:
                unique = await self.dedup.is_unique(item.title)
            except StoreError as e:
                logger.warning("Failed to check article uniqueness: %s", e)
                unique = True
            if not unique:
                logger.info("Skipping non-unique article: %s", item.title)
                continue

            # StoreError here aborts the cycle.
            if await asyncio.to_thread(self.store.insert_article_if_absent, to_article(item, source.id)):
                stored += 1
        return stored
