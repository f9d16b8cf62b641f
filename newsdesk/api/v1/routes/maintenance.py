"""
Operator endpoints (API-key protected, rate limited).

POST /api/v1/maintenance/process-sources           crawl now (background)
POST /api/v1/maintenance/validate-summaries        validate now (background)
POST /api/v1/maintenance/rebuild-cache             rebuild timelines and digests
POST /api/v1/maintenance/translate-summary/{id}    translate one summary
POST /api/v1/maintenance/revisit-categories        stream category re-check progress
GET  /api/v1/maintenance/stats                     group and timeline counters
"""

from collections.abc import AsyncIterator
from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from newsdesk.api.v1.deps import AuthenticatedUser, Container
from newsdesk.core.config import get_settings
from newsdesk.core.logging import get_logger
from newsdesk.core.security import limiter
from newsdesk.models.models import Language, utcnow
from newsdesk.schemas.schemas import MessageResponse, RebuildResponse, TranslateResponse
from newsdesk.services.container import ServiceContainer

router = APIRouter(prefix="/maintenance", tags=["maintenance"])
logger = get_logger(__name__)


def _rate_limit() -> str:
    return get_settings().maintenance_rate_limit


async def _run_crawl(container: ServiceContainer) -> None:
    try:
        await container.scheduler.run_exclusive(container.news.process_sources)
    except Exception as e:
        logger.error("manual_crawl_failed", error=str(e), exc_info=True)


async def _run_validation(container: ServiceContainer) -> None:
    try:
        await container.scheduler.run_exclusive(container.validation.validate_new_summaries)
    except Exception as e:
        logger.error("manual_validation_failed", error=str(e), exc_info=True)


@router.post("/process-sources", response_model=MessageResponse, status_code=202)
@limiter.limit(_rate_limit)
async def process_sources(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container,
    _api_key: AuthenticatedUser,
) -> MessageResponse:
    background_tasks.add_task(_run_crawl, container)
    logger.info("manual_crawl_triggered")
    return MessageResponse(message="News processing started")


@router.post("/validate-summaries", response_model=MessageResponse, status_code=202)
@limiter.limit(_rate_limit)
async def validate_summaries(
    request: Request,
    background_tasks: BackgroundTasks,
    container: Container,
    _api_key: AuthenticatedUser,
) -> MessageResponse:
    background_tasks.add_task(_run_validation, container)
    logger.info("manual_validation_triggered")
    return MessageResponse(message="Summary validation started")


@router.post("/rebuild-cache", response_model=RebuildResponse)
@limiter.limit(_rate_limit)
async def rebuild_cache(
    request: Request, container: Container, _api_key: AuthenticatedUser
) -> RebuildResponse:
    try:
        counts = await container.maintenance.rebuild_cache()
    except Exception as e:
        logger.error("cache_rebuild_failed", error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Cache rebuild failed") from e
    return RebuildResponse(**counts)


@router.post("/translate-summary/{summary_id}", response_model=TranslateResponse)
@limiter.limit(_rate_limit)
async def translate_summary(
    request: Request,
    summary_id: str,
    container: Container,
    _api_key: AuthenticatedUser,
    language: Language = Language.EN,
) -> TranslateResponse:
    try:
        translated = await container.translation.translate_one(summary_id, language)
    except Exception as e:
        logger.error("manual_translation_failed", summary_id=summary_id, error=str(e))
        raise HTTPException(status_code=500, detail="Translation failed") from e
    return TranslateResponse(
        summary_id=summary_id,
        translated_id=translated.id if translated else None,
        language=language,
    )


@router.post("/revisit-categories")
@limiter.limit(_rate_limit)
async def revisit_categories(
    request: Request,
    container: Container,
    _api_key: AuthenticatedUser,
    since: datetime | None = None,
    hours: int = Query(default=24, ge=1, le=24 * 30),
) -> StreamingResponse:
    start = since or utcnow() - timedelta(hours=hours)

    async def lines() -> AsyncIterator[str]:
        async for line in container.validation.revisit_categories(start):
            yield line + "\n"

    return StreamingResponse(lines(), media_type="text/plain; charset=utf-8")


@router.get("/stats", response_model=dict[str, int])
async def stats(container: Container, _api_key: AuthenticatedUser) -> dict[str, int]:
    try:
        return await container.maintenance.stats()
    except Exception as e:
        logger.error("stats_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Could not collect stats") from e
