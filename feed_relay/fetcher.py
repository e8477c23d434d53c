from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

import aiohttp
import feedparser

from .exceptions import FeedFetchError
from .models import Item, Source
from .normalizer import to_item
from .parser import parse_entry

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

FEED_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/rss+xml, application/xml, application/atom+xml, text/xml, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}

_RATE_LIMIT_MARKERS = ("429", "too many requests", "rate limit")


def is_rate_limited(error: BaseException) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def backoff_delay(attempt: int, base_delay: float, rate_limited: bool = False) -> float:
    """
    Seconds to wait before retry number `attempt` (1-based).

    Exponential in the attempt; a rate-limited previous failure widens the
    wait by a further (attempt + 1) factor.
    """
    delay = base_delay * (2 ** attempt)
    if rate_limited:
        delay *= attempt + 1
    return delay


class RSSSource:
    """
    Fetch one feed and return its entries as Items.

    Each attempt is bounded by `request_timeout`; the caller bounds the whole
    operation (retries included) by cancelling or timing out the `fetch()` await.
    """

    def __init__(
        self,
        source: Source,
        *,
        attempts: int = 5,
        base_delay: float = 3.0,
        request_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.source = source
        self.attempts = max(1, attempts)
        self.base_delay = base_delay
        self.request_timeout = request_timeout
        self._session = session

    @property
    def id(self) -> int:
        return self.source.id

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def url(self) -> str:
        return self.source.feed_url

    async def fetch(self) -> List[Item]:
        feed = await self._load_feed_with_retry()
        fetched_at = datetime.now(timezone.utc)

        items: List[Item] = []
        for entry in feed.entries:
            try:
                items.append(to_item(parse_entry(entry), self.name, fetched_at))
            except ValueError as e:
                logger.debug("Skipping malformed entry from %s: %s", self.url, e)
        return items

    async def _load_feed_with_retry(self) -> Any:
        last_err: Optional[Exception] = None
        rate_limited = False

        for attempt in range(self.attempts):
            if attempt > 0:
                delay = backoff_delay(attempt, self.base_delay, rate_limited)
                logger.info("Retry %d for %s, waiting %.0fs", attempt, self.url, delay)
                await asyncio.sleep(delay)

            try:
                return await self._load_feed()
            except Exception as e:
                last_err = e
                rate_limited = is_rate_limited(e)
                if rate_limited:
                    logger.warning("Rate limit detected for %s: %s", self.url, e)
                else:
                    logger.debug("Attempt %d for %s failed: %s", attempt + 1, self.url, e)

        raise FeedFetchError(f"Failed to load feed from {self.url}: {last_err}") from last_err

    async def _load_feed(self) -> Any:
        body = await self._download()

        # Cancellation while parsing abandons the worker thread's result.
        feed = await asyncio.to_thread(feedparser.parse, body)

        entries = getattr(feed, "entries", None)
        if getattr(feed, "bozo", 0) and not entries:
            exc = getattr(feed, "bozo_exception", None)
            msg = f"Invalid RSS/Atom feed: {self.url}"
            if exc:
                msg += f" ({exc})"
            raise FeedFetchError(msg)
        if not isinstance(entries, list):
            raise FeedFetchError(f"Feed has no entries: {self.url}")
        return feed

    async def _download(self) -> bytes:
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        if self._session is not None:
            return await self._get(self._session, timeout)
        async with aiohttp.ClientSession() as session:
            return await self._get(session, timeout)

    async def _get(self, session: aiohttp.ClientSession, timeout: aiohttp.ClientTimeout) -> bytes:
        async with session.get(self.url, headers=FEED_HEADERS, timeout=timeout) as resp:
            resp.raise_for_status()
            return await resp.read()
