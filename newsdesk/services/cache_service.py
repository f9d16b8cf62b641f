"""
Redis-backed read cache: per-language timelines, index sets and point entries.

Key layout:
  latest:summaries:{lang}        sorted set, score = generated_at (unix seconds)
  summaries:by:category:{id}     set of summary ids
  summaries:by:source:{id}       set of summary ids
  summary:{id}                   projection JSON with a fixed TTL
  latest:digests:{lang}          sorted set of digest projections
  digest:{id}                    digest projection JSON with a fixed TTL
  digest:posted:{lang}           id of the last digest delivered by email

The timeline is the only ordering authority. Index sets are membership
filters; ids trimmed from a timeline are removed from them too.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models.models import Digest, Language
from newsdesk.schemas.schemas import CachedDigest, CachedSummary
from newsdesk.services.projections import build_digest_projection, build_summary_projection

logger = get_logger(__name__)

_TIMELINE_SCAN_BATCH = 200


def summary_key(summary_id: str) -> str:
    return f"summary:{summary_id}"


def summaries_timeline_key(language: Language) -> str:
    return f"latest:summaries:{language.value}"


def category_index_key(category_id: int) -> str:
    return f"summaries:by:category:{category_id}"


def source_index_key(source_id: str) -> str:
    return f"summaries:by:source:{source_id}"


def digest_key(digest_id: str) -> str:
    return f"digest:{digest_id}"


def digests_timeline_key(language: Language) -> str:
    return f"latest:digests:{language.value}"


def posted_digest_key(language: Language) -> str:
    return f"digest:posted:{language.value}"


class CacheService:
    def __init__(self, redis: Redis, settings: Settings) -> None:
        self._redis = redis
        self._settings = settings

    # ── Locks ───────────────────────────────────────────────
    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        """Distributed lock; released on exit and expired by Redis after the timeout."""
        timeout = self._settings.cache_lock_timeout_seconds
        async with self._redis.lock(f"lock:{name}", timeout=timeout, blocking_timeout=timeout):
            yield

    # ── Summaries ───────────────────────────────────────────
    async def upsert_summary(self, projection: CachedSummary) -> None:
        score = projection.generated_at.timestamp()
        payload = projection.model_dump_json()
        timeline = summaries_timeline_key(projection.language)
        max_len = self._settings.cache_max_summaries

        previous = await self.get_summary(projection.id)

        pipe = self._redis.pipeline(transaction=True)
        if previous is not None:
            if previous.category_id != projection.category_id:
                pipe.srem(category_index_key(previous.category_id), projection.id)
            if previous.source_id != projection.source_id:
                pipe.srem(source_index_key(previous.source_id), projection.id)
        # an edited summary keeps its score; drop the stale member before re-adding
        pipe.zremrangebyscore(timeline, score, score)
        pipe.zadd(timeline, {payload: score})
        pipe.sadd(category_index_key(projection.category_id), projection.id)
        pipe.sadd(source_index_key(projection.source_id), projection.id)
        evicted_at = len(pipe)
        pipe.zrange(timeline, 0, -max_len - 1)
        pipe.zremrangebyrank(timeline, 0, -max_len - 1)
        pipe.set(summary_key(projection.id), payload, ex=self._settings.cache_entry_ttl_seconds)
        results = await pipe.execute()

        evicted = results[evicted_at]
        if evicted:
            await self._unindex(evicted)

    async def _unindex(self, payloads: list[str]) -> None:
        """Drop trimmed timeline members from the category and source index sets."""
        pipe = self._redis.pipeline(transaction=False)
        for raw in payloads:
            trimmed = CachedSummary.model_validate_json(raw)
            pipe.srem(category_index_key(trimmed.category_id), trimmed.id)
            pipe.srem(source_index_key(trimmed.source_id), trimmed.id)
        await pipe.execute()
        logger.debug("cache_timeline_trimmed", evicted=len(payloads))

    async def refresh_summary(self, session: AsyncSession, summary_id: str) -> CachedSummary | None:
        """Rebuild one projection from the database and upsert it."""
        projection = await build_summary_projection(
            session, summary_id, self._settings.similarity_inline_references
        )
        if projection is None:
            logger.warning("cache_refresh_missing_summary", summary_id=summary_id)
            return None
        await self.upsert_summary(projection)
        return projection

    async def get_summary(self, summary_id: str) -> CachedSummary | None:
        raw = await self._redis.get(summary_key(summary_id))
        return CachedSummary.model_validate_json(raw) if raw else None

    async def cache_summary(self, projection: CachedSummary) -> None:
        """Point entry only; does not touch the timeline."""
        await self._redis.set(
            summary_key(projection.id),
            projection.model_dump_json(),
            ex=self._settings.cache_entry_ttl_seconds,
        )

    async def get_latest_summaries(
        self,
        language: Language,
        skip: int = 0,
        take: int = 20,
        category_id: int | None = None,
        source_id: str | None = None,
    ) -> list[CachedSummary]:
        timeline = summaries_timeline_key(language)
        if take <= 0:
            return []

        if category_id is None and source_id is None:
            raw = await self._redis.zrevrange(timeline, skip, skip + take - 1)
            return [CachedSummary.model_validate_json(r) for r in raw]

        index_keys = []
        if category_id is not None:
            index_keys.append(category_index_key(category_id))
        if source_id is not None:
            index_keys.append(source_index_key(source_id))
        allowed = await self._redis.sinter(index_keys)
        if not allowed:
            return []

        # walk the timeline newest first so the result keeps recency order
        matched: list[CachedSummary] = []
        seen = 0
        start = 0
        while len(matched) < take:
            batch = await self._redis.zrevrange(timeline, start, start + _TIMELINE_SCAN_BATCH - 1)
            if not batch:
                break
            for raw in batch:
                projection = CachedSummary.model_validate_json(raw)
                if projection.id not in allowed:
                    continue
                if seen >= skip:
                    matched.append(projection)
                    if len(matched) == take:
                        break
                seen += 1
            start += _TIMELINE_SCAN_BATCH
        return matched

    async def timeline_size(self, language: Language) -> int:
        return await self._redis.zcard(summaries_timeline_key(language))

    async def clear_summaries(self) -> None:
        keys = [summaries_timeline_key(lang) for lang in Language]
        async for key in self._redis.scan_iter(match="summaries:by:*"):
            keys.append(key)
        await self._redis.delete(*keys)

    async def rebuild_summaries(self, projections: list[CachedSummary]) -> int:
        """Replace every timeline and index set with `projections`. Caller holds the lock."""
        await self.clear_summaries()
        for projection in projections:
            await self.upsert_summary(projection)
        logger.info("cache_rebuilt", summaries=len(projections))
        return len(projections)

    # ── Digests ─────────────────────────────────────────────
    async def add_digest(self, projection: CachedDigest) -> None:
        score = projection.generated_at.timestamp()
        payload = projection.model_dump_json()
        timeline = digests_timeline_key(projection.language)

        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(timeline, score, score)
        pipe.zadd(timeline, {payload: score})
        pipe.zremrangebyrank(timeline, 0, -self._settings.cache_max_digests - 1)
        pipe.set(digest_key(projection.id), payload, ex=self._settings.cache_entry_ttl_seconds)
        await pipe.execute()

    async def refresh_digest(self, session: AsyncSession, digest: Digest) -> CachedDigest:
        projection = await build_digest_projection(session, digest)
        await self.add_digest(projection)
        return projection

    async def get_digest(self, digest_id: str) -> CachedDigest | None:
        raw = await self._redis.get(digest_key(digest_id))
        return CachedDigest.model_validate_json(raw) if raw else None

    async def get_latest_digests(
        self, language: Language, skip: int = 0, take: int = 10
    ) -> list[CachedDigest]:
        if take <= 0:
            return []
        raw = await self._redis.zrevrange(digests_timeline_key(language), skip, skip + take - 1)
        return [CachedDigest.model_validate_json(r) for r in raw]

    async def get_posted_digest_id(self, language: Language) -> str | None:
        return await self._redis.get(posted_digest_key(language))

    async def set_posted_digest_id(self, language: Language, digest_id: str) -> None:
        await self._redis.set(posted_digest_key(language), digest_id)
