"""
SQL store for sources and articles.

Tables:
  - sources: feeds to poll, each with a delivery priority
  - articles: delivery candidates, unique per (source_id, link); delivered_at is
    NULL until the article has been sent to the channel
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import (
    Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, create_engine,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .dedup import is_unique_among
from .exceptions import StoreError
from .models import Article, Source

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_db(dt: datetime) -> datetime:
    """Columns hold naive UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc)


# ── Models ───────────────────────────────────────────────────────────────────

class SourceModel(Base):
    __tablename__ = "sources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    feed_url = Column(String(1000), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=_utcnow)


class ArticleModel(Base):
    __tablename__ = "articles"
    __table_args__ = (UniqueConstraint("source_id", "link", name="uq_articles_source_link"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(Integer, ForeignKey("sources.id"), nullable=False, index=True)
    title = Column(String(1000), nullable=False)
    link = Column(String(2000), nullable=False)
    summary = Column(Text, default="")
    published_at = Column(DateTime, nullable=False, index=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)


def _source(row: SourceModel) -> Source:
    return Source(
        id=row.id,
        name=row.name,
        feed_url=row.feed_url,
        priority=row.priority,
        created_at=_from_db(row.created_at),
    )


def _article(row: ArticleModel, priority: int = 0) -> Article:
    return Article(
        id=row.id,
        source_id=row.source_id,
        title=row.title,
        link=row.link,
        summary=row.summary or "",
        published_at=_from_db(row.published_at),
        delivered_at=_from_db(row.delivered_at),
        created_at=_from_db(row.created_at),
        source_priority=priority or 0,
    )


# ── Store ────────────────────────────────────────────────────────────────────

class ArticleStore:
    """
    Every call opens its own short session; nothing is held across network I/O.
    Any database failure surfaces as StoreError.
    """

    def __init__(self, database_url: str = "sqlite:///feed_relay.db") -> None:
        kwargs = {}
        if database_url.startswith("sqlite"):
            # Sessions are opened from worker threads.
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, echo=False, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to create tables: {e}") from e

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ── Sources ───────────────────────────────────────────────────────

    def list_sources(self) -> List[Source]:
        with self.get_session() as session:
            rows = session.query(SourceModel).order_by(SourceModel.id).all()
            return [_source(r) for r in rows]

    def get_source(self, source_id: int) -> Optional[Source]:
        with self.get_session() as session:
            row = session.get(SourceModel, source_id)
            return _source(row) if row else None

    def add_source(self, name: str, feed_url: str, priority: int = 0) -> int:
        with self.get_session() as session:
            row = SourceModel(name=name, feed_url=feed_url, priority=priority)
            session.add(row)
            session.flush()
            return row.id

    def set_priority(self, source_id: int, priority: int) -> bool:
        with self.get_session() as session:
            row = session.get(SourceModel, source_id)
            if row is None:
                return False
            row.priority = priority
            return True

    def delete_source(self, source_id: int) -> bool:
        with self.get_session() as session:
            row = session.get(SourceModel, source_id)
            if row is None:
                return False
            session.query(ArticleModel).filter(ArticleModel.source_id == source_id).delete()
            session.delete(row)
            return True

    # ── Articles ──────────────────────────────────────────────────────

    def insert_article_if_absent(self, article: Article) -> bool:
        """Insert unless (source_id, link) is already stored. Returns True if inserted."""
        with self.get_session() as session:
            exists = (
                session.query(ArticleModel.id)
                .filter_by(source_id=article.source_id, link=article.link)
                .first()
            )
            if exists:
                return False
            session.add(ArticleModel(
                source_id=article.source_id,
                title=article.title,
                link=article.link,
                summary=article.summary or "",
                published_at=_to_db(article.published_at),
            ))
            try:
                session.flush()
            except IntegrityError:
                # A concurrent cycle inserted the same row first.
                session.rollback()
                return False
            return True

    def not_delivered_since(
        self,
        cutoff: datetime,
        limit: int,
        below_priority: Optional[int] = None,
    ) -> List[Article]:
        """Undelivered articles published since `cutoff`, oldest first."""
        with self.get_session() as session:
            q = (
                session.query(ArticleModel, SourceModel.priority)
                .join(SourceModel, SourceModel.id == ArticleModel.source_id)
                .filter(ArticleModel.delivered_at.is_(None))
                .filter(ArticleModel.published_at >= _to_db(cutoff))
            )
            if below_priority is not None:
                q = q.filter(SourceModel.priority < below_priority)
            rows = q.order_by(ArticleModel.created_at.asc(), ArticleModel.id.asc()).limit(limit).all()
            return [_article(a, p) for a, p in rows]

    def high_priority_not_delivered_since(self, threshold: int, cutoff: datetime, limit: int) -> List[Article]:
        """Undelivered articles from sources at or above `threshold`; highest priority, then newest first."""
        with self.get_session() as session:
            rows = (
                session.query(ArticleModel, SourceModel.priority)
                .join(SourceModel, SourceModel.id == ArticleModel.source_id)
                .filter(ArticleModel.delivered_at.is_(None))
                .filter(ArticleModel.published_at >= _to_db(cutoff))
                .filter(SourceModel.priority >= threshold)
                .order_by(
                    SourceModel.priority.desc(),
                    ArticleModel.created_at.desc(),
                    ArticleModel.id.desc(),
                )
                .limit(limit)
                .all()
            )
            return [_article(a, p) for a, p in rows]

    def articles_since(self, since: datetime, limit: int) -> List[Article]:
        """All articles published since `since`, newest first, for manual publishing."""
        with self.get_session() as session:
            rows = (
                session.query(ArticleModel, SourceModel.priority)
                .join(SourceModel, SourceModel.id == ArticleModel.source_id)
                .filter(ArticleModel.published_at >= _to_db(since))
                .order_by(ArticleModel.published_at.desc(), SourceModel.priority.desc())
                .limit(limit)
                .all()
            )
            return [_article(a, p) for a, p in rows]

    def mark_delivered(self, article_id: int) -> None:
        with self.get_session() as session:
            row = session.get(ArticleModel, article_id)
            if row is None:
                raise StoreError(f"article {article_id} not found")
            row.delivered_at = _utcnow()

    def is_title_unique_since(self, title: str, cutoff: datetime) -> bool:
        """
        True when no article delivered and created since `cutoff` has a
        near-duplicate title (see dedup.titles_match).
        """
        with self.get_session() as session:
            rows = (
                session.query(ArticleModel.title)
                .filter(ArticleModel.created_at >= _to_db(cutoff))
                .filter(ArticleModel.delivered_at.isnot(None))
                .all()
            )
            return is_unique_among(title, (r[0] for r in rows))
