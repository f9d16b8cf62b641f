"""
Process-wide wiring of clients, services, pipeline stages and workers.

Built once by the FastAPI lifespan (or the cron entry point) and closed on
shutdown. Tests build it with fakes in place of Redis and the chat models.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from langchain_core.language_models import BaseChatModel
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from newsdesk.adapters.registry import AdapterRegistry, default_registry
from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models import repositories
from newsdesk.models.database import build_engine, build_session_factory, create_schema
from newsdesk.pipeline.digest import DigestService
from newsdesk.pipeline.maintenance import MaintenanceService
from newsdesk.pipeline.news_processing import NewsProcessingService
from newsdesk.pipeline.similarity import SimilarityService
from newsdesk.pipeline.translation import SummaryTranslationService
from newsdesk.pipeline.validation import SummaryValidationService
from newsdesk.services.ai_service import AiService
from newsdesk.services.broker import Broker, ChannelPool
from newsdesk.services.cache_service import CacheService
from newsdesk.services.crawler import PoliteFetcher
from newsdesk.services.email_service import EmailService
from newsdesk.services.rate_limiter import RateLimiter
from newsdesk.workers.listeners import BrokerListeners, VectorSearchService
from newsdesk.workers.scheduler import PipelineScheduler

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis
    pool: ChannelPool
    registry: AdapterRegistry
    cache: CacheService
    ai: AiService
    broker: Broker
    fetcher: PoliteFetcher
    news: NewsProcessingService
    validation: SummaryValidationService
    translation: SummaryTranslationService
    similarity: SimilarityService
    digest: DigestService
    maintenance: MaintenanceService
    scheduler: PipelineScheduler
    listeners: BrokerListeners
    stop: asyncio.Event = field(default_factory=asyncio.Event)

    async def validate_sources(self) -> None:
        """Fail fast when an active source names an unregistered adapter."""
        async with self.session_factory() as session:
            sources = await repositories.get_active_sources(session)
        self.registry.validate(s.adapter_key for s in sources)
        logger.info("sources_validated", sources=len(sources), adapters=self.registry.keys())

    async def start_workers(self) -> None:
        if self.settings.scheduler_enabled:
            self.scheduler.start()
        self.listeners.start()

    async def aclose(self) -> None:
        self.stop.set()
        await self.scheduler.stop()
        await self.listeners.stop()
        await self.fetcher.aclose()
        await self.pool.close()
        await self.redis.aclose()
        await self.engine.dispose()


def build_container(
    settings: Settings,
    redis: Redis | None = None,
    engine: AsyncEngine | None = None,
    chat_models: dict[str, BaseChatModel] | None = None,
    registry: AdapterRegistry | None = None,
    fetcher: PoliteFetcher | None = None,
    search: VectorSearchService | None = None,
) -> ServiceContainer:
    redis = redis or Redis.from_url(settings.redis_url, decode_responses=True)
    engine = engine or build_engine(settings)
    session_factory = build_session_factory(engine)
    stop = asyncio.Event()

    # broker channels share the cache client's connection settings
    pool = ChannelPool(
        lambda: Redis(connection_pool=redis.connection_pool), settings.broker_pool_size
    )
    registry = registry or default_registry()
    cache = CacheService(redis, settings)
    ai = AiService(settings, RateLimiter(redis), chat_models)
    broker = Broker(pool, settings)
    fetcher = fetcher or PoliteFetcher(settings)

    news = NewsProcessingService(session_factory, registry, fetcher, ai, broker, settings)
    validation = SummaryValidationService(session_factory, ai, cache, broker, settings)
    translation = SummaryTranslationService(session_factory, ai, cache, broker, settings)
    similarity = SimilarityService(session_factory, ai, cache, settings)
    digest = DigestService(session_factory, ai, cache, EmailService(settings), settings)
    maintenance = MaintenanceService(session_factory, cache, settings)

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        redis=redis,
        pool=pool,
        registry=registry,
        cache=cache,
        ai=ai,
        broker=broker,
        fetcher=fetcher,
        news=news,
        validation=validation,
        translation=translation,
        similarity=similarity,
        digest=digest,
        maintenance=maintenance,
        scheduler=PipelineScheduler(settings, news, validation, translation, digest, stop),
        listeners=BrokerListeners(broker, similarity, settings, search, stop),
        stop=stop,
    )


async def create_container(settings: Settings, **overrides) -> ServiceContainer:
    """Build the container, create tables on SQLite and validate adapter keys."""
    container = build_container(settings, **overrides)
    if settings.is_sqlite:
        await create_schema(container.engine)
    await container.validate_sources()
    return container
