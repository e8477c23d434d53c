from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from .models import Article, Item


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_item(entry: Dict[str, Any], source_name: str, fetched_at: datetime) -> Item:
    """
    Convert a parsed entry dict into an Item.
    Requires:
    - link (non-empty)
    Optional:
    - title, summary, categories
    - published_at (falls back to `fetched_at`)
    """
    link = entry.get("link") or ""
    if not link:
        raise ValueError("Entry lacks required field for Item: link")

    published_at = entry.get("published_at") or fetched_at

    return Item(
        title=entry.get("title") or "",
        link=link,
        summary=entry.get("summary") or "",
        published_at=as_utc(published_at),
        source_name=source_name,
        categories=list(entry.get("categories") or []),
    )


def to_article(item: Item, source_id: int) -> Article:
    return Article(
        source_id=source_id,
        title=item.title,
        link=item.link,
        summary=item.summary,
        published_at=as_utc(item.published_at),
    )
