"""
Builders for the cached read models.

A projection is always rebuilt from the source of truth; nothing here reads
the cache.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.models import repositories
from newsdesk.models.models import Digest
from newsdesk.schemas.schemas import (
    CachedDigest,
    CachedDigestReference,
    CachedSimilarReference,
    CachedSummary,
)


def to_similar_reference(row: repositories.SimilarRow) -> CachedSimilarReference:
    return CachedSimilarReference(
        id=row.summary_id,
        title=row.title,
        source=row.source,
        generated_at=row.generated_at,
        reason=row.reason,
    )


async def build_summary_projection(
    session: AsyncSession, summary_id: str, inline_similarities: int
) -> CachedSummary | None:
    details = await repositories.get_summary_details(session, summary_id)
    if details is None:
        return None

    # one extra row tells us whether a "load more" cursor is needed
    rows = await repositories.get_similar_summaries(session, summary_id, 0, inline_similarities + 1)
    shown = rows[:inline_similarities]
    next_offset = len(shown) if len(rows) > inline_similarities else None

    summary, article = details.summary, details.article
    return CachedSummary(
        id=summary.id,
        title=summary.title,
        article=summary.body,
        language=summary.language,
        state=summary.state,
        reason=summary.reason,
        generated_at=summary.generated_at,
        category_id=details.category.id,
        category=details.category.name,
        category_local=details.category.local,
        source_id=details.source.id,
        source=details.source.name,
        article_title=article.title,
        article_url=article.url,
        similarities=[to_similar_reference(r) for r in shown],
        similarities_next_offset=next_offset,
    )


async def build_digest_projection(session: AsyncSession, digest: Digest) -> CachedDigest:
    references = await repositories.get_digest_references(session, digest.id)
    return CachedDigest(
        id=digest.id,
        title=digest.title,
        content=digest.content,
        language=digest.language,
        generated_at=digest.generated_at,
        period_start=digest.period_start,
        period_end=digest.period_end,
        references=[
            CachedDigestReference(
                summary_id=ref.summary_id,
                title=ref.title,
                url=ref.url,
                reason=ref.reason,
                source=source_name,
            )
            for ref, source_name in references
        ],
    )
