"""
FastAPI application: public feed, operator maintenance and health.

The lifespan owns the service container: it is built (and adapter keys are
validated) before the first request, the scheduler loops and broker
consumers start with it, and shutdown waits for in-flight runs.
Run locally: uvicorn newsdesk.main:app --reload
Production:  uvicorn newsdesk.main:app --host 0.0.0.0 --workers 1
(one worker: the scheduler and consumers run inside the web process)
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from newsdesk.api.v1.routes import health, maintenance, summaries
from newsdesk.core.config import Settings, get_settings
from newsdesk.core.errors import NewsdeskError
from newsdesk.core.logging import get_logger, setup_logging
from newsdesk.core.security import limiter
from newsdesk.services.container import create_container

logger = get_logger(__name__)

VERSION = "0.1.0"


async def _pipeline_error_handler(request: Request, exc: NewsdeskError) -> JSONResponse:
    logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal pipeline error"})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        logger.info(
            "app_starting",
            environment=settings.app_env,
            database=settings.database_url.split("@")[-1][:40],
            scheduler=settings.scheduler_enabled,
        )
        container = await create_container(settings)
        app.state.container = container
        await container.start_workers()

        yield

        logger.info("app_shutting_down")
        await container.aclose()

    docs_enabled = settings.app_env != "production"
    app = FastAPI(
        title="Newsdesk",
        description="News ingestion, summarization, clustering and digest pipeline",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
    )

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(NewsdeskError, _pipeline_error_handler)

    app.include_router(health.router)
    app.include_router(summaries.router, prefix="/api/v1")
    app.include_router(maintenance.router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "service": "Newsdesk",
            "version": VERSION,
            "feed": "/api/v1/summaries",
            "health": "/healthz/",
        }

    return app


app = create_app()
