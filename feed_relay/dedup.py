from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Protocol, Set

SIMILARITY_THRESHOLD = 0.6
DEFAULT_LOOKBACK = timedelta(days=7)

_WORD_RE = re.compile(r"[^\W_]+")


class TitleIndex(Protocol):
    def is_title_unique_since(self, title: str, cutoff: datetime) -> bool:  # pragma: no cover - interface
        ...


def trigrams(text: str) -> Set[str]:
    """
    Trigram set in the manner of PostgreSQL's pg_trgm: lowercase, split into
    alphanumeric words, pad each word with two leading and one trailing space.
    """
    out: Set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            out.add(padded[i:i + 3])
    return out


def trigram_similarity(a: str, b: str) -> float:
    ta, tb = trigrams(a), trigrams(b)
    if not ta or not tb:
        return 0.0
    shared = len(ta & tb)
    return shared / (len(ta) + len(tb) - shared)


def titles_match(candidate: str, stored: str) -> bool:
    """
    Near-duplicate test between a new title and a stored one: exact match,
    case-insensitive containment, or trigram similarity above the threshold.
    """
    if candidate == stored:
        return True
    if candidate and candidate.lower() in stored.lower():
        return True
    return trigram_similarity(candidate, stored) > SIMILARITY_THRESHOLD


def is_unique_among(candidate: str, stored_titles: Iterable[str]) -> bool:
    return not any(titles_match(candidate, t) for t in stored_titles)


class DedupFilter:
    """Decide whether a title is new within a lookback window."""

    def __init__(self, store: TitleIndex, lookback: timedelta = DEFAULT_LOOKBACK) -> None:
        self.store = store
        self.lookback = lookback

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now - self.lookback

    async def is_unique(self, title: str) -> bool:
        return await asyncio.to_thread(self.store.is_title_unique_since, title, self.cutoff())
