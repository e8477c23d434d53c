from __future__ import annotations

import calendar
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import feedparser


def _to_datetime(entry: Dict[str, Any]) -> Optional[datetime]:
    """
    Convert feed entry date fields to timezone-aware UTC datetime.
    Priority: published_parsed -> updated_parsed -> created_parsed -> None.
    """
    # feedparser normalizes *_parsed to UTC struct_time, so timegm (not mktime).
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        val = entry.get(key)
        if isinstance(val, time.struct_time):
            try:
                return datetime.fromtimestamp(calendar.timegm(val), tz=timezone.utc)
            except (OverflowError, ValueError):
                continue
    for key in ("published", "updated", "created"):
        s = entry.get(key)
        if isinstance(s, str) and s:
            parsed = feedparser._parse_date(s)  # type: ignore[attr-defined]
            if isinstance(parsed, time.struct_time):
                try:
                    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
                except (OverflowError, ValueError):
                    continue
    return None


def _get_categories(entry: Dict[str, Any]) -> List[str]:
    out: List[str] = []
    tags = entry.get("tags")
    if not isinstance(tags, list):
        return out
    for tag in tags:
        if isinstance(tag, dict):
            term = tag.get("term")
            if isinstance(term, str) and term.strip():
                out.append(term.strip())
    return out


def parse_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a raw feed entry (from feedparser) to a normalized dict with common fields.
    Fields: title, summary, link, categories, published_at (datetime|None)
    """
    title = (entry.get("title") or "").strip()
    summary = (entry.get("summary") or entry.get("description") or "").strip()
    link = (entry.get("link") or entry.get("feedburner_origlink") or "").strip()

    return {
        "title": title,
        "summary": summary,
        "link": link,
        "categories": _get_categories(entry),
        "published_at": _to_datetime(entry),
    }
