from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest

from feed_relay.exceptions import DeliveryError
from feed_relay.models import Article
from feed_relay.storage import ArticleStore


class FakeSink:
    """Records sent messages; raises DeliveryError while `fail` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Tuple[int, str]] = []

    async def send(self, chat_id: int, text: str) -> int:
        if self.fail:
            raise DeliveryError("channel unavailable")
        self.sent.append((chat_id, text))
        return len(self.sent)


class StubExtractor:
    def __init__(self, summary: str = "A short summary.", error: Exception = None) -> None:
        self.summary = summary
        self.error = error
        self.calls: List[Article] = []

    async def extract(self, article: Article) -> str:
        self.calls.append(article)
        if self.error is not None:
            raise self.error
        return self.summary


class RecordingSummarizer:
    def __init__(self, result: str = "The article explains the news. It has details.", error: Exception = None) -> None:
        self.result = result
        self.error = error
        self.texts: List[str] = []

    def summarize(self, text: str) -> str:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def store():
    s = ArticleStore("sqlite://")
    s.create_tables()
    return s


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


def make_article(source_id: int, title: str, link: str, published_at=None, summary: str = "") -> Article:
    return Article(
        source_id=source_id,
        title=title,
        link=link,
        summary=summary,
        published_at=published_at or datetime.now(timezone.utc) - timedelta(minutes=5),
    )
