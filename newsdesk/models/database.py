"""
Async database session factory.

Uses SQLAlchemy 2.0 async engine with asyncpg (Postgres) or aiosqlite (dev).
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from newsdesk.core.config import Settings
from newsdesk.models.models import Base


def build_engine(settings: Settings) -> AsyncEngine:
    if ":memory:" in settings.database_url:
        # one shared connection, otherwise every session sees an empty database
        return create_async_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create tables directly. Production deployments run migrations instead."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
