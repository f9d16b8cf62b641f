"""
Similarity engine: clusters summaries that cover the same event.

Driven by SimilarRequest messages. For one summary:
  1. stop if it already belongs to a group
  2. collect the K most recent same-language, same-category candidates
  3. attach the titles of the groups each candidate already sits in
  4. ask the pro model for at most one matching candidate
  5. drop answers that name an id outside the candidate set
  6. join every group of the match, or open a new group with both
The membership check and the merge are not atomic; two concurrent requests
for the same summary can both pass step 1.
"""

from __future__ import annotations

import json

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models import repositories
from newsdesk.models.models import (
    MAX_GROUP_TITLE,
    MAX_REFERENCE_REASON,
    NewsSummary,
    SimilarGroup,
    SimilarReference,
    utcnow,
)
from newsdesk.schemas.schemas import SimilaritiesPage, SimilarityResponse, SimilarRequest
from newsdesk.services.ai_service import AiService
from newsdesk.services.cache_service import CacheService
from newsdesk.services.projections import to_similar_reference

logger = get_logger(__name__)

SIMILARITY_SYSTEM_PROMPT = """You are a semantic similarity analyzer for a news feed.
The first summary in the list is the TARGET; every other entry is a CANDIDATE.
Find the single candidate that reports exactly the same event as the target.

A candidate matches only if it covers the same concrete event (same actors, same place,
same moment) and adds no unrelated story.
Reject a candidate when:
- it is a roundup or digest that mixes several topics
- the overlap is only thematic (same topic, different event)
- it describes an earlier or later stage of the story, or the same story from a different angle
- its existing groups (field "groups") are about a different event than the target

If no candidate is a strong match, return similar_summary_id as null.
Returning nothing is always better than returning a weak match.
When you do return a match, reason is one short sentence explaining it."""

_EXCERPT_CHARS = 200


def _comparison_entry(summary: NewsSummary, groups: list[str] | None = None) -> dict:
    entry = {"id": summary.id, "title": summary.title, "summary": summary.body[:_EXCERPT_CHARS]}
    if groups is not None:
        entry["groups"] = groups
    return entry


class SimilarityService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ai: AiService,
        cache: CacheService,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._ai = ai
        self._cache = cache
        self._settings = settings

    async def handle_request(self, request: SimilarRequest) -> None:
        """Broker handler; exceptions propagate so the message is requeued."""
        await self.find_similar(request.summary_id)

    async def find_similar(self, summary_id: str) -> list[str]:
        """Run one clustering pass for `summary_id`. Returns the ids of groups it joined."""
        async with self._session_factory() as session:
            target = await session.get(NewsSummary, summary_id)
            if target is None:
                logger.warning("similarity_summary_missing", summary_id=summary_id)
                return []

            existing = await repositories.get_groups_for_summary(session, summary_id)
            if existing:
                logger.info(
                    "similarity_already_grouped", summary_id=summary_id, groups=len(existing)
                )
                return []

            candidates = await repositories.get_similarity_candidates(
                session, target, self._settings.similarity_max_candidates
            )
            if not candidates:
                logger.info("similarity_no_candidates", summary_id=summary_id)
                return []

            group_titles = await repositories.get_group_titles(session, [c.id for c in candidates])
            payload = [_comparison_entry(target)] + [
                _comparison_entry(c, group_titles.get(c.id, [])) for c in candidates
            ]

            response = await self._ai.generate_structured_response(
                SIMILARITY_SYSTEM_PROMPT,
                json.dumps(payload, ensure_ascii=False),
                SimilarityResponse(
                    similar_summary_id="<candidate id or null>", reason="Same concrete event"
                ),
            )
            if response is None or not response.similar_summary_id:
                logger.info("similarity_no_match", summary_id=summary_id)
                return []

            by_id = {c.id: c for c in candidates}
            match = by_id.get(response.similar_summary_id.strip())
            if match is None:
                logger.error(
                    "similarity_unknown_candidate",
                    summary_id=summary_id,
                    returned=response.similar_summary_id,
                )
                return []

            reason = response.reason[:MAX_REFERENCE_REASON]
            groups = await repositories.get_groups_for_summary(session, match.id)
            now = utcnow()
            if groups:
                for group in groups:
                    session.add(
                        SimilarReference(
                            group_id=group.id, summary_id=target.id, reason=reason, created_at=now
                        )
                    )
                joined = [g.id for g in groups]
                logger.info(
                    "similarity_group_joined",
                    summary_id=summary_id,
                    match_id=match.id,
                    groups=len(groups),
                    reason=reason,
                )
            else:
                group = SimilarGroup(
                    title=target.title[:MAX_GROUP_TITLE], language=target.language, created_at=now
                )
                session.add(group)
                await session.flush()
                session.add_all(
                    [
                        SimilarReference(
                            group_id=group.id, summary_id=match.id, reason="", created_at=now
                        ),
                        SimilarReference(
                            group_id=group.id, summary_id=target.id, reason=reason, created_at=now
                        ),
                    ]
                )
                joined = [group.id]
                logger.info(
                    "similarity_group_created",
                    summary_id=summary_id,
                    match_id=match.id,
                    group_id=group.id,
                    reason=reason,
                )
            await session.commit()

            for summary in (target, match):
                await self._refresh_cached(session, summary)
            return joined

    async def _refresh_cached(self, session: AsyncSession, summary: NewsSummary) -> None:
        # Created summaries enter the timeline only once validated
        if summary.state not in repositories.FEED_STATES:
            return
        await self._cache.refresh_summary(session, summary.id)

    async def get_similarities(
        self, summary_id: str, offset: int, limit: int
    ) -> SimilaritiesPage:
        """Page of summaries sharing a group with `summary_id`, most recently linked first."""
        async with self._session_factory() as session:
            rows = await repositories.get_similar_summaries(session, summary_id, offset, limit + 1)
        items = rows[:limit]
        next_offset = offset + len(items) if len(rows) > limit else None
        return SimilaritiesPage(
            items=[to_similar_reference(r) for r in items], next_offset=next_offset
        )
