"""Operator maintenance: cache rebuild and pipeline statistics."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models import repositories
from newsdesk.models.models import Language, SummaryState
from newsdesk.services.cache_service import CacheService
from newsdesk.services.projections import build_summary_projection

logger = get_logger(__name__)

REBUILD_LOCK = "cache:rebuild"


class MaintenanceService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._settings = settings

    async def rebuild_cache(self) -> dict[str, int]:
        """Rebuild timelines, index sets and digests from the database."""
        s = self._settings
        async with self._cache.lock(REBUILD_LOCK):
            async with self._session_factory() as session:
                # newest first over every language; upsert trims each timeline on its own
                ids = await repositories.get_feed_summary_ids(
                    session, s.cache_max_summaries * len(Language)
                )
                projections = []
                for summary_id in reversed(ids):
                    projection = await build_summary_projection(
                        session, summary_id, s.similarity_inline_references
                    )
                    if projection is not None:
                        projections.append(projection)
                summaries = await self._cache.rebuild_summaries(projections)

                digests = 0
                for language in Language:
                    recent = await repositories.get_recent_digests(
                        session, language, s.cache_max_digests
                    )
                    for digest in reversed(recent):
                        await self._cache.refresh_digest(session, digest)
                        digests += 1

        logger.info("cache_rebuild_complete", summaries=summaries, digests=digests)
        return {"summaries": summaries, "digests": digests}

    async def stats(self) -> dict[str, int]:
        async with self._session_factory() as session:
            groups, references = await repositories.count_group_references(session)
            pending = await repositories.get_summaries_by_state(session, [SummaryState.CREATED])
        result = {"groups": groups, "references": references, "pending_validation": len(pending)}
        for language in Language:
            result[f"timeline_{language.value}"] = await self._cache.timeline_size(language)
        return result
