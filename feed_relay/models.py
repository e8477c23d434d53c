from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


# Articles from sources at or above this priority are auto-published.
PRIORITY_THRESHOLD = 8


@dataclass(frozen=True)
class Source:
    id: int
    name: str
    feed_url: str
    priority: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Item:
    """
    A single feed entry as produced by the source adapter.

    Items are never persisted as-is; the fetch scheduler turns the ones that
    survive filtering and dedup into Articles.
    """
    title: str
    link: str
    summary: str
    published_at: datetime
    source_name: str
    categories: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Article:
    """
    Stored delivery candidate.

    WARNING: (source_id, link) is the identity used by the store's idempotent insert.
    """
    source_id: int
    title: str
    link: str
    published_at: datetime
    summary: str = ""
    id: Optional[int] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    source_priority: int = 0


@dataclass
class PublishStats:
    published: int = 0
    failed: int = 0
    skipped: int = 0

    def __add__(self, other: "PublishStats") -> "PublishStats":
        return PublishStats(
            published=self.published + other.published,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
        )
