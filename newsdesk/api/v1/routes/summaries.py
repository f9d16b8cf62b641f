"""
Public read endpoints backed by the cache.

GET /api/v1/summaries                          feed page (newest first, optional filters)
GET /api/v1/summaries/{id}                     one summary projection
GET /api/v1/summaries/{id}/similarities        "load more" similar summaries
GET /api/v1/digests                            digest page
GET /api/v1/digests/{id}                       one digest
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from newsdesk.api.v1.deps import Container, Page
from newsdesk.core.logging import get_logger
from newsdesk.models.models import Language
from newsdesk.schemas.schemas import CachedDigest, CachedSummary, SimilaritiesPage
from newsdesk.services.projections import build_summary_projection

router = APIRouter(tags=["feed"])
logger = get_logger(__name__)


@router.get("/summaries", response_model=list[CachedSummary])
async def list_summaries(
    container: Container,
    page: Page,
    language: Language = Language.RU,
    category_id: int | None = None,
    source_id: str | None = None,
) -> list[CachedSummary]:
    return await container.cache.get_latest_summaries(
        language, skip=page.skip, take=page.take, category_id=category_id, source_id=source_id
    )


@router.get("/summaries/{summary_id}", response_model=CachedSummary)
async def get_summary(summary_id: str, container: Container) -> CachedSummary:
    cached = await container.cache.get_summary(summary_id)
    if cached is not None:
        return cached

    async with container.session_factory() as session:
        projection = await build_summary_projection(
            session, summary_id, container.settings.similarity_inline_references
        )
    if projection is None:
        raise HTTPException(status_code=404, detail=f"Summary {summary_id} not found")
    await container.cache.cache_summary(projection)
    return projection


@router.get("/summaries/{summary_id}/similarities", response_model=SimilaritiesPage)
async def get_similarities(
    summary_id: str,
    container: Container,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=50),
) -> SimilaritiesPage:
    """Pass the projection's `similarities_next_offset` (or a page's `next_offset`) as offset."""
    return await container.similarity.get_similarities(summary_id, offset, limit)


@router.get("/digests", response_model=list[CachedDigest])
async def list_digests(
    container: Container,
    page: Page,
    language: Language = Language.RU,
) -> list[CachedDigest]:
    return await container.cache.get_latest_digests(language, skip=page.skip, take=page.take)


@router.get("/digests/{digest_id}", response_model=CachedDigest)
async def get_digest(digest_id: str, container: Container) -> CachedDigest:
    cached = await container.cache.get_digest(digest_id)
    if cached is None:
        raise HTTPException(status_code=404, detail=f"Digest {digest_id} not found")
    return cached
