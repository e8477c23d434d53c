from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Protocol

from .core import run_periodically
from .dedup import DedupFilter
from .delivery import Sink
from .exceptions import DeliveryError, ExtractionError, StoreError
from .extractor import ContentExtractor
from .markup import format_article
from .models import PRIORITY_THRESHOLD, Article, PublishStats

logger = logging.getLogger(__name__)


class ArticleProvider(Protocol):
    def not_delivered_since(self, cutoff: datetime, limit: int, below_priority: Optional[int] = None) -> List[Article]: ...  # pragma: no cover - interface
    def high_priority_not_delivered_since(self, threshold: int, cutoff: datetime, limit: int) -> List[Article]: ...  # pragma: no cover - interface
    def mark_delivered(self, article_id: int) -> None: ...  # pragma: no cover - interface
    def is_title_unique_since(self, title: str, cutoff: datetime) -> bool: ...  # pragma: no cover - interface


class NotificationScheduler:
    """
    Deliver stored articles to the channel.

    Every tick runs two passes:
      1. auto-publish sweep - all undelivered articles from sources at or above
         the priority threshold (capped per tick), highest priority then newest;
      2. single pick - the oldest undelivered article from the other sources.

    Titles are re-checked for duplicates right before sending, since another
    source may have published the same story after the article was stored.
    """

    def __init__(
        self,
        store: ArticleProvider,
        extractor: ContentExtractor,
        sink: Sink,
        *,
        channel_id: int,
        interval: float,
        lookup_window: timedelta,
        dedup: Optional[DedupFilter] = None,
        threshold: int = PRIORITY_THRESHOLD,
        sweep_limit: int = 10,
        publish_delay: float = 5.0,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.sink = sink
        self.channel_id = channel_id
        self.interval = interval
        self.lookup_window = lookup_window
        self.dedup = dedup or DedupFilter(store)
        self.threshold = threshold
        self.sweep_limit = sweep_limit
        self.publish_delay = publish_delay

    async def start(self) -> None:
        """Publish until cancelled. Any error from either pass ends the loop."""
        await run_periodically(self.interval, self.run_once)

    async def run_once(self) -> PublishStats:
        stats = await self.publish_high_priority()
        return stats + await self.publish_next()

    def _cutoff(self) -> datetime:
        return datetime.now(timezone.utc) - self.lookup_window

    async def _is_duplicate(self, article: Article) -> bool:
        """True when the article should be dropped; a failed check counts as a duplicate."""
        try:
            unique = await self.dedup.is_unique(article.title)
        except StoreError as e:
            logger.warning("Failed to check title uniqueness for %r: %s", article.title, e)
            return True
        if not unique:
            logger.info("Skipping non-unique article: %s", article.title)
        return not unique

    async def _mark_delivered(self, article: Article) -> None:
        await asyncio.to_thread(self.store.mark_delivered, article.id)

    async def publish_high_priority(self) -> PublishStats:
        stats = PublishStats()
        articles = await asyncio.to_thread(
            self.store.high_priority_not_delivered_since, self.threshold, self._cutoff(), self.sweep_limit,
        )
        if not articles:
            return stats

        logger.info("Found %d high priority articles for auto-publishing", len(articles))

        for article in articles:
            if await self._is_duplicate(article):
                await self._mark_delivered(article)
                stats.skipped += 1
                continue

            try:
                await self.publish(article)
            except DeliveryError as e:
                logger.error("Failed to publish high priority article %r: %s", article.title, e)
                stats.failed += 1
                continue

            stats.published += 1
            logger.info("Successfully published high priority article: %s", article.title)
            if self.publish_delay > 0:
                await asyncio.sleep(self.publish_delay)

        return stats

    async def publish_next(self) -> PublishStats:
        stats = PublishStats()
        articles = await asyncio.to_thread(
            self.store.not_delivered_since, self._cutoff(), 1, self.threshold,
        )
        if not articles:
            return stats

        article = articles[0]
        if await self._is_duplicate(article):
            await self._mark_delivered(article)
            stats.skipped += 1
            return stats

        await self.publish(article)
        stats.published += 1
        return stats

    async def publish(self, article: Article) -> None:
        """Extract, format, send, then mark delivered. Nothing is marked if sending fails."""
        try:
            summary = await self.extractor.extract(article)
        except ExtractionError as e:
            logger.warning("Publishing %r without summary: %s", article.title, e)
            summary = ""

        text = format_article(article, summary)
        logger.info(
            "Sending article to channel %s summary. Title: %s, Message length: %d",
            "with" if summary else "without", article.title, len(text),
        )
        await self.sink.send(self.channel_id, text)
        await self._mark_delivered(article)
        logger.info("Successfully sent article to channel: %s", article.title)

    async def publish_batch(self, articles: Iterable[Article]) -> PublishStats:
        """
        Manual publishing of an explicit selection. Nothing is raised: delivery
        failures count as `failed`, and a sent article that could not be marked
        delivered counts as `skipped`.
        """
        stats = PublishStats()
        for article in articles:
            try:
                await self.publish(article)
            except DeliveryError as e:
                logger.error("Failed to publish article %r: %s", article.title, e)
                stats.failed += 1
                continue
            except StoreError as e:
                logger.error("Sent article %r but failed to mark it delivered: %s", article.title, e)
                stats.skipped += 1
                continue
            stats.published += 1
        return stats
