from __future__ import annotations

import re

from .models import Article

# Discord rejects messages above this many characters.
MESSAGE_LIMIT = 2000

_SPECIAL_CHARS = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def escape_markdown(text: str) -> str:
    return _SPECIAL_CHARS.sub(r"\\\1", text)


def _shorten(text: str, room: int) -> str:
    """Longest prefix of `text` whose escaped form plus an ellipsis fits in `room`."""
    cut = text
    while cut:
        overflow = len(escape_markdown(cut)) + 1 - room
        if overflow <= 0:
            break
        cut = cut[: len(cut) - overflow].rstrip()
    return escape_markdown(cut) + "…" if cut else ""


def format_article(article: Article, summary: str = "") -> str:
    """
    Render an article as bold title, optional summary block, then link.
    All three parts are escaped; only the summary is shortened to fit the limit.
    """
    title = f"**{escape_markdown(article.title)}**"
    link = escape_markdown(article.link)
    summary = (summary or "").strip()
    if not summary:
        return f"{title}\n\n{link}"

    room = MESSAGE_LIMIT - len(title) - len(link) - 4
    body = escape_markdown(summary)
    if len(body) > room:
        body = _shorten(summary, room)
    if not body:
        return f"{title}\n\n{link}"
    return f"{title}\n\n{body}\n\n{link}"
