from __future__ import annotations

from typing import Iterable, List, Optional

from .models import Item


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    t = text.lower()
    return any(k.lower() in t for k in keywords)


def parse_keywords(raw: Optional[str]) -> List[str]:
    """Split a comma-separated keyword setting, dropping blanks."""
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


def should_skip(item: Item, keywords: Iterable[str]) -> bool:
    """
    True if the item is filtered out by any keyword.

    A keyword matches when it equals one of the item's category tags exactly,
    or occurs anywhere in the title regardless of case.
    """
    keywords = [k for k in keywords if k]
    if not keywords:
        return False

    categories = set(item.categories)
    if any(k in categories for k in keywords):
        return True
    return _contains_any(item.title, keywords)
