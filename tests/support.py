"""
Test doubles, harness and seeding helpers shared by the unit tests.

Async code runs inside one asyncio.run() per test: the in-memory SQLite
engine and the fake Redis clients are created inside that loop by
build_harness(). AI calls go through ScriptedAi (stage tests) or
FakeListChatModel (AiService tests), so no API keys are needed.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta

import fakeredis
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from newsdesk.core.config import Settings
from newsdesk.models.database import build_engine, build_session_factory, create_schema
from newsdesk.models.models import (
    Category,
    Language,
    NewsArticle,
    NewsSource,
    NewsSummary,
    SummaryState,
    utcnow,
)
from newsdesk.services.broker import Broker, ChannelPool
from newsdesk.services.cache_service import CacheService


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///:memory:",
        "api_key": "test-key",
        "crawler_use_random_delay": False,
        "broker_block_ms": 50,
        "cache_max_summaries": 100,
        "digest_min_corpus": 3,
        "timezone": "UTC",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class ScriptedAi:
    """Stands in for AiService: answers are queued per response type."""

    def __init__(self, **answers: list[BaseModel | None]) -> None:
        self._answers: dict[str, list[BaseModel | None]] = defaultdict(list)
        for name, queue in answers.items():
            self._answers[name] = list(queue)
        self.calls: list[tuple[str, str, str]] = []
        self.samples: list[BaseModel] = []

    def queue(self, response_type: str, *answers: BaseModel | None) -> None:
        self._answers[response_type].extend(answers)

    async def generate_structured_response(self, system_prompt, user_input, sample):
        name = type(sample).__name__
        self.calls.append((name, system_prompt, user_input))
        self.samples.append(sample)
        queue = self._answers[name]
        return queue.pop(0) if queue else None


@dataclass
class Harness:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    server: fakeredis.FakeServer
    redis: fakeredis.FakeAsyncRedis
    cache: CacheService
    broker: Broker
    pool: ChannelPool

    def new_client(self) -> fakeredis.FakeAsyncRedis:
        return fakeredis.FakeAsyncRedis(server=self.server, decode_responses=True)

    async def aclose(self) -> None:
        await self.pool.close()
        await self.redis.aclose()
        await self.engine.dispose()


async def build_harness(settings: Settings) -> Harness:
    engine = build_engine(settings)
    await create_schema(engine)
    server = fakeredis.FakeServer()
    redis = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
    pool = ChannelPool(
        lambda: fakeredis.FakeAsyncRedis(server=server, decode_responses=True),
        settings.broker_pool_size,
    )
    return Harness(
        settings=settings,
        engine=engine,
        session_factory=build_session_factory(engine),
        server=server,
        redis=redis,
        cache=CacheService(redis, settings),
        broker=Broker(pool, settings),
        pool=pool,
    )


class RecordingBroker:
    """Broker double that only records what would have been published."""

    def __init__(self) -> None:
        self.published: list[tuple[str, BaseModel]] = []

    async def publish(self, queue: str, message: BaseModel) -> str:
        self.published.append((queue, message))
        return str(len(self.published))


# ── Seeding helpers ─────────────────────────────────────────
async def add_source(
    session: AsyncSession, domain: str = "example.kg", name: str = "Example", adapter_key="rss"
) -> NewsSource:
    source = NewsSource(domain=domain, name=name, adapter_key=adapter_key, is_active=True)
    session.add(source)
    await session.flush()
    return source


async def add_category(
    session: AsyncSession, category_id: int = 1, name: str = "Politics", local: str = "Политика"
) -> Category:
    category = Category(id=category_id, name=name, local=local)
    session.add(category)
    await session.flush()
    return category


async def add_summary(
    session: AsyncSession,
    source: NewsSource,
    category_id: int = 1,
    *,
    title: str = "Summary",
    url: str | None = None,
    language: Language = Language.RU,
    state: SummaryState = SummaryState.VALIDATED,
    generated_at: datetime | None = None,
    article: NewsArticle | None = None,
) -> NewsSummary:
    generated_at = generated_at or utcnow()
    if article is None:
        article = NewsArticle(
            source_id=source.id,
            url=url or f"https://{source.domain}/news/{title.lower().replace(' ', '-')}",
            title=f"Original {title}",
            published_at=generated_at - timedelta(minutes=5),
            collected_at=generated_at,
        )
        session.add(article)
        await session.flush()
    summary = NewsSummary(
        article_id=article.id,
        title=title,
        body=f"Body of {title}",
        category_id=category_id,
        language=language,
        state=state,
        generated_at=generated_at,
    )
    session.add(summary)
    await session.flush()
    return summary
