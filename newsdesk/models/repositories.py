"""
Explicit read queries over the ORM models.

Every function takes an AsyncSession owned by the caller (one session per
unit of work) and issues joined queries instead of lazy navigation.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from newsdesk.models.models import (
    Category,
    Digest,
    DigestReference,
    Language,
    NewsArticle,
    NewsSource,
    NewsSummary,
    SimilarGroup,
    SimilarReference,
    SummaryState,
)

ACTIVE_STATES = (SummaryState.CREATED, SummaryState.VALIDATED, SummaryState.DIGESTED)
FEED_STATES = (SummaryState.VALIDATED, SummaryState.DIGESTED)


@dataclass
class SummaryDetails:
    summary: NewsSummary
    article: NewsArticle
    source: NewsSource
    category: Category


@dataclass
class SimilarRow:
    summary_id: str
    title: str
    source: str
    generated_at: datetime
    reason: str


# ── Sources / categories / articles ─────────────────────────
async def get_active_sources(session: AsyncSession) -> Sequence[NewsSource]:
    result = await session.scalars(
        select(NewsSource).where(NewsSource.is_active.is_(True)).order_by(NewsSource.domain)
    )
    return result.all()


async def get_categories(session: AsyncSession) -> Sequence[Category]:
    result = await session.scalars(select(Category).order_by(Category.id))
    return result.all()


async def article_exists(session: AsyncSession, url: str) -> bool:
    result = await session.scalar(select(exists().where(NewsArticle.url == url)))
    return bool(result)


# ── Summaries ───────────────────────────────────────────────
async def get_summaries_by_state(
    session: AsyncSession,
    states: Iterable[SummaryState],
    since: datetime | None = None,
    language: Language | None = None,
) -> Sequence[NewsSummary]:
    """Summaries in the given states, oldest first."""
    stmt = select(NewsSummary).where(NewsSummary.state.in_(list(states)))
    if since is not None:
        stmt = stmt.where(NewsSummary.generated_at >= since)
    if language is not None:
        stmt = stmt.where(NewsSummary.language == language)
    result = await session.scalars(stmt.order_by(NewsSummary.generated_at))
    return result.all()


async def get_summary_with_article(
    session: AsyncSession, summary_id: str
) -> tuple[NewsSummary, NewsArticle] | None:
    row = (
        await session.execute(
            select(NewsSummary, NewsArticle)
            .join(NewsArticle, NewsArticle.id == NewsSummary.article_id)
            .where(NewsSummary.id == summary_id)
        )
    ).first()
    return (row[0], row[1]) if row else None


async def get_summary_details(session: AsyncSession, summary_id: str) -> SummaryDetails | None:
    row = (
        await session.execute(
            select(NewsSummary, NewsArticle, NewsSource, Category)
            .join(NewsArticle, NewsArticle.id == NewsSummary.article_id)
            .join(NewsSource, NewsSource.id == NewsArticle.source_id)
            .join(Category, Category.id == NewsSummary.category_id)
            .where(NewsSummary.id == summary_id)
        )
    ).first()
    if row is None:
        return None
    return SummaryDetails(summary=row[0], article=row[1], source=row[2], category=row[3])


async def get_feed_summary_ids(session: AsyncSession, limit: int) -> list[str]:
    """Ids of the newest Validated/Digested summaries, newest first."""
    result = await session.scalars(
        select(NewsSummary.id)
        .where(NewsSummary.state.in_(FEED_STATES))
        .order_by(NewsSummary.generated_at.desc())
        .limit(limit)
    )
    return list(result.all())


async def has_sibling(session: AsyncSession, article_id: str, language: Language) -> bool:
    result = await session.scalar(
        select(
            exists().where(
                NewsSummary.article_id == article_id, NewsSummary.language == language
            )
        )
    )
    return bool(result)


async def get_untranslated(session: AsyncSession, language: Language) -> Sequence[NewsSummary]:
    """Validated/Digested summaries whose article has no summary in `language`, oldest first."""
    sibling = aliased(NewsSummary)
    stmt = (
        select(NewsSummary)
        .where(
            NewsSummary.state.in_(FEED_STATES),
            NewsSummary.language != language,
            ~exists().where(
                sibling.article_id == NewsSummary.article_id, sibling.language == language
            ),
        )
        .order_by(NewsSummary.generated_at)
    )
    result = await session.scalars(stmt)
    return result.all()


# ── Similarity groups ───────────────────────────────────────
async def get_groups_for_summary(session: AsyncSession, summary_id: str) -> Sequence[SimilarGroup]:
    result = await session.scalars(
        select(SimilarGroup)
        .join(SimilarReference, SimilarReference.group_id == SimilarGroup.id)
        .where(SimilarReference.summary_id == summary_id)
        .distinct()
        .order_by(SimilarGroup.created_at)
    )
    return result.all()


async def get_similarity_candidates(
    session: AsyncSession, target: NewsSummary, limit: int
) -> Sequence[NewsSummary]:
    """Most recent same-language, same-category summaries at or before `target`."""
    result = await session.scalars(
        select(NewsSummary)
        .where(
            NewsSummary.language == target.language,
            NewsSummary.category_id == target.category_id,
            NewsSummary.state.in_(ACTIVE_STATES),
            NewsSummary.generated_at <= target.generated_at,
            NewsSummary.id != target.id,
        )
        .order_by(NewsSummary.generated_at.desc())
        .limit(limit)
    )
    return result.all()


async def get_group_titles(
    session: AsyncSession, summary_ids: Iterable[str]
) -> dict[str, list[str]]:
    ids = list(summary_ids)
    if not ids:
        return {}
    rows = await session.execute(
        select(SimilarReference.summary_id, SimilarGroup.title)
        .join(SimilarGroup, SimilarGroup.id == SimilarReference.group_id)
        .where(SimilarReference.summary_id.in_(ids))
        .order_by(SimilarGroup.created_at)
    )
    titles: dict[str, list[str]] = defaultdict(list)
    for summary_id, title in rows:
        if title not in titles[summary_id]:
            titles[summary_id].append(title)
    return dict(titles)


async def get_similar_summaries(
    session: AsyncSession, summary_id: str, offset: int, limit: int
) -> list[SimilarRow]:
    """Summaries sharing a group with `summary_id`, most recently linked first."""
    group_ids = select(SimilarReference.group_id).where(SimilarReference.summary_id == summary_id)
    linked = (
        select(
            SimilarReference.summary_id.label("summary_id"),
            func.max(SimilarReference.created_at).label("linked_at"),
            func.max(SimilarReference.reason).label("reason"),
        )
        .where(
            SimilarReference.group_id.in_(group_ids),
            SimilarReference.summary_id != summary_id,
        )
        .group_by(SimilarReference.summary_id)
        .subquery()
    )
    rows = await session.execute(
        select(
            NewsSummary.id,
            NewsSummary.title,
            NewsSource.name,
            NewsSummary.generated_at,
            linked.c.reason,
        )
        .join(linked, linked.c.summary_id == NewsSummary.id)
        .join(NewsArticle, NewsArticle.id == NewsSummary.article_id)
        .join(NewsSource, NewsSource.id == NewsArticle.source_id)
        .order_by(linked.c.linked_at.desc(), NewsSummary.generated_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return [
        SimilarRow(summary_id=r[0], title=r[1], source=r[2], generated_at=r[3], reason=r[4] or "")
        for r in rows
    ]


async def count_group_references(session: AsyncSession) -> tuple[int, int]:
    """(group count, reference count); used by maintenance reporting and tests."""
    groups = await session.scalar(select(func.count()).select_from(SimilarGroup))
    refs = await session.scalar(select(func.count()).select_from(SimilarReference))
    return int(groups or 0), int(refs or 0)


# ── Digests ─────────────────────────────────────────────────
async def get_latest_digest(session: AsyncSession, language: Language) -> Digest | None:
    return await session.scalar(
        select(Digest)
        .where(Digest.language == language)
        .order_by(Digest.generated_at.desc())
        .limit(1)
    )


async def get_digest_corpus(
    session: AsyncSession, language: Language, start: datetime, end: datetime
) -> list[tuple[NewsSummary, NewsArticle]]:
    """Validated summaries generated inside [start, end], oldest first."""
    rows = await session.execute(
        select(NewsSummary, NewsArticle)
        .join(NewsArticle, NewsArticle.id == NewsSummary.article_id)
        .where(
            NewsSummary.state == SummaryState.VALIDATED,
            NewsSummary.language == language,
            NewsSummary.generated_at >= start,
            NewsSummary.generated_at <= end,
        )
        .order_by(NewsSummary.generated_at)
    )
    return [(r[0], r[1]) for r in rows]


async def get_digest_references(
    session: AsyncSession, digest_id: str
) -> list[tuple[DigestReference, str]]:
    """References of a digest with their source display names, in digest order."""
    rows = await session.execute(
        select(DigestReference, NewsSource.name)
        .join(NewsSummary, NewsSummary.id == DigestReference.summary_id)
        .join(NewsArticle, NewsArticle.id == NewsSummary.article_id)
        .join(NewsSource, NewsSource.id == NewsArticle.source_id)
        .where(DigestReference.digest_id == digest_id)
        .order_by(DigestReference.position)
    )
    return [(r[0], r[1]) for r in rows]


async def get_recent_digests(
    session: AsyncSession, language: Language, limit: int
) -> Sequence[Digest]:
    result = await session.scalars(
        select(Digest)
        .where(Digest.language == language)
        .order_by(Digest.generated_at.desc())
        .limit(limit)
    )
    return result.all()
