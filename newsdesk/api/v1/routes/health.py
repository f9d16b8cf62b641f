"""Health check endpoint, used by the platform healthcheck and monitoring."""

from __future__ import annotations

from fastapi import APIRouter
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from newsdesk.api.v1.deps import AppSettings, Container
from newsdesk.schemas.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/healthz/", response_model=HealthResponse)
async def health_check(container: Container, settings: AppSettings) -> HealthResponse:
    try:
        async with container.session_factory() as session:
            await session.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError:
        database = "unavailable"

    try:
        await container.redis.ping()
        cache = "connected"
    except (RedisError, OSError):
        cache = "unavailable"

    healthy = database == "connected" and cache == "connected"
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        environment=settings.app_env,
        database=database,
        cache=cache,
    )
