"""
SQLAlchemy 2.0 ORM models.

Core entities: NewsSource, Category, NewsArticle, NewsSummary, SimilarGroup
(+ SimilarReference), Digest (+ DigestReference).
Relations are plain foreign-key columns; every read that needs joined data
issues an explicit joined query (see models/repositories.py).
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

MAX_GROUP_TITLE = 255
MAX_REFERENCE_REASON = 255


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on backends (SQLite) that drop tzinfo."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    pass


# ── Enums ───────────────────────────────────────────────────
class Language(str, enum.Enum):
    RU = "ru"
    EN = "en"

    @property
    def description(self) -> str:
        return {"ru": "Russian", "en": "English"}[self.value]


class SummaryState(str, enum.Enum):
    CREATED = "created"
    VALIDATED = "validated"
    DIGESTED = "digested"
    DISCARDED = "discarded"


class DigestState(str, enum.Enum):
    CREATED = "created"
    PUBLISHED = "published"
    DISCARDED = "discarded"


# ── Models ──────────────────────────────────────────────────
class NewsSource(Base):
    __tablename__ = "news_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    domain: Mapped[str] = mapped_column(String(255), unique=True)
    name: Mapped[str] = mapped_column(String(255))
    adapter_key: Mapped[str] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_crawled: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def mark_crawled(self) -> None:
        self.last_crawled = utcnow()


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    local: Mapped[str] = mapped_column(String(100))


class NewsArticle(Base):
    __tablename__ = "news_articles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    source_id: Mapped[str] = mapped_column(ForeignKey("news_sources.id"), index=True)
    url: Mapped[str] = mapped_column(String(2000), unique=True)
    title: Mapped[str] = mapped_column(String(1000))
    published_at: Mapped[datetime] = mapped_column(UTCDateTime)
    collected_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class NewsSummary(Base):
    __tablename__ = "news_summaries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    article_id: Mapped[str] = mapped_column(ForeignKey("news_articles.id"), index=True)
    title: Mapped[str] = mapped_column(String(1000))
    body: Mapped[str] = mapped_column(Text)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"))
    language: Mapped[Language] = mapped_column(Enum(Language), default=Language.RU)
    state: Mapped[SummaryState] = mapped_column(
        Enum(SummaryState), default=SummaryState.CREATED, index=True
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)

    # ── State machine ───────────────────────────────────────
    def validate(self, reason: str | None = None) -> None:
        if self.state != SummaryState.CREATED:
            raise ValueError(f"Cannot validate summary in state {self.state.value}")
        self.state = SummaryState.VALIDATED
        self.reason = reason

    def discard(self, reason: str | None = None) -> None:
        if self.state != SummaryState.CREATED:
            raise ValueError(f"Cannot discard summary in state {self.state.value}")
        self.state = SummaryState.DISCARDED
        self.reason = reason

    def mark_digested(self) -> None:
        if self.state != SummaryState.VALIDATED:
            raise ValueError(f"Cannot digest summary in state {self.state.value}")
        self.state = SummaryState.DIGESTED

    def update_category(self, category_id: int) -> None:
        self.category_id = category_id


class SimilarGroup(Base):
    __tablename__ = "similar_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(MAX_GROUP_TITLE))
    language: Mapped[Language] = mapped_column(Enum(Language))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class SimilarReference(Base):
    __tablename__ = "similar_references"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    group_id: Mapped[str] = mapped_column(ForeignKey("similar_groups.id"), index=True)
    summary_id: Mapped[str] = mapped_column(ForeignKey("news_summaries.id"), index=True)
    reason: Mapped[str] = mapped_column(String(MAX_REFERENCE_REASON), default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class Digest(Base):
    __tablename__ = "digests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(500))
    content: Mapped[str] = mapped_column(Text)
    language: Mapped[Language] = mapped_column(Enum(Language), index=True)
    period_start: Mapped[datetime] = mapped_column(UTCDateTime)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
    state: Mapped[DigestState] = mapped_column(Enum(DigestState), default=DigestState.CREATED)


class DigestReference(Base):
    __tablename__ = "digest_references"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    digest_id: Mapped[str] = mapped_column(ForeignKey("digests.id"), index=True)
    summary_id: Mapped[str] = mapped_column(ForeignKey("news_summaries.id", ondelete="RESTRICT"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(1000))
    url: Mapped[str] = mapped_column(String(2000))
    reason: Mapped[str] = mapped_column(Text, default="")
