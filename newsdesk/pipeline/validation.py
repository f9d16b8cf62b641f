"""
Validation stage: Created summaries become Validated or Discarded.

Also hosts the "revisit categories" maintenance pass, which re-asks the
validator for Validated/Digested summaries and moves them to the category
named by the returned topic.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models import repositories
from newsdesk.models.models import NewsArticle, NewsSummary, SummaryState
from newsdesk.schemas.schemas import IndexRequest, ValidationResponse
from newsdesk.services.ai_service import AiService
from newsdesk.services.broker import INDEX_QUEUE, Broker
from newsdesk.services.cache_service import CacheService

logger = get_logger(__name__)

VALIDATION_SYSTEM_PROMPT = """You are a validation assistant. Compare the original article headline
with the title and body of a generated summary.
Decide whether they match semantically (isValid) and explain why (reason).
Consider: 1) relevance of the title 2) accuracy of the summary 3) overall quality.
If isValid is false, reason states why the summary is rejected; if true, reason confirms its quality.
The original URL often carries a transliteration of the headline and may help."""

TOPIC_PROMPT_SUFFIX = """
Also set topic to exactly one of the following category names (the part before the parentheses):
{categories}"""


def _validation_input(summary: NewsSummary, article: NewsArticle) -> str:
    return (
        f"Original title: {article.title}\n"
        f"Original URL: {article.url}\n"
        f"Summary title: {summary.title}\n"
        f"Summary body: {summary.body}"
    )


class SummaryValidationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ai: AiService,
        cache: CacheService,
        broker: Broker,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._ai = ai
        self._cache = cache
        self._broker = broker
        self._settings = settings

    async def _ask(
        self, summary: NewsSummary, article: NewsArticle, category_prompt: str | None = None
    ) -> ValidationResponse | None:
        system_prompt = VALIDATION_SYSTEM_PROMPT
        if category_prompt:
            system_prompt += TOPIC_PROMPT_SUFFIX.format(categories=category_prompt)
        return await self._ai.generate_structured_response(
            system_prompt,
            _validation_input(summary, article),
            ValidationResponse(is_valid=True, reason="Why the summary matches", topic="Category"),
        )

    async def validate_new_summaries(self) -> dict[str, int]:
        """Judge every Created summary, oldest first."""
        counts = {"validated": 0, "discarded": 0, "skipped": 0}

        async with self._session_factory() as session:
            summaries = await repositories.get_summaries_by_state(session, [SummaryState.CREATED])
            # ids up front: a rollback expires every loaded instance
            for summary_id in [s.id for s in summaries]:
                try:
                    outcome = await self._validate_one(session, summary_id)
                except Exception as e:
                    await session.rollback()
                    logger.error(
                        "validation_failed", summary_id=summary_id, error=str(e), exc_info=True
                    )
                    outcome = "skipped"
                counts[outcome] += 1

        logger.info("validation_complete", **counts)
        return counts

    async def _validate_one(self, session: AsyncSession, summary_id: str) -> str:
        pair = await repositories.get_summary_with_article(session, summary_id)
        if pair is None:
            return "skipped"
        summary, article = pair
        if summary.state != SummaryState.CREATED:
            return "skipped"

        verdict = await self._ask(summary, article)
        if verdict is None:
            # stays Created and is picked up again by the next run
            logger.warning("validation_no_result", summary_id=summary_id)
            return "skipped"

        if not verdict.is_valid:
            summary.discard(verdict.reason)
            await session.commit()
            logger.warning("summary_discarded", summary_id=summary_id, reason=verdict.reason)
            return "discarded"

        summary.validate(verdict.reason)
        await session.commit()
        logger.info("summary_validated", summary_id=summary_id, reason=verdict.reason)

        await self._cache.refresh_summary(session, summary_id)
        if self._settings.search_enabled:
            await self._broker.publish(INDEX_QUEUE, IndexRequest(summary_id=summary_id, op="add"))
        return "validated"

    async def revisit_categories(self, since: datetime) -> AsyncIterator[str]:
        """Re-check categories of Validated/Digested summaries, yielding progress lines."""
        async with self._session_factory() as session:
            summaries = await repositories.get_summaries_by_state(
                session, [SummaryState.VALIDATED, SummaryState.DIGESTED], since=since
            )
            categories = await repositories.get_categories(session)
            by_local = {c.local: c for c in categories}
            by_id = {c.id: c for c in categories}
            category_prompt = "\n".join(f"{c.local} ({c.name})" for c in categories)

            total = len(summaries)
            for index, summary in enumerate(summaries, start=1):
                yield f"PROGRESS: {index}/{total}"

                pair = await repositories.get_summary_with_article(session, summary.id)
                if pair is None:
                    continue
                verdict = await self._ask(pair[0], pair[1], category_prompt)

                new_category = by_local.get(verdict.topic.strip()) if verdict else None
                if (
                    verdict is not None
                    and verdict.is_valid
                    and new_category is not None
                    and new_category.id != summary.category_id
                ):
                    old = by_id.get(summary.category_id)
                    old_name = old.local if old else str(summary.category_id)
                    summary.update_category(new_category.id)
                    await session.commit()
                    await self._cache.refresh_summary(session, summary.id)
                    logger.info(
                        "summary_category_updated",
                        summary_id=summary.id,
                        old=old_name,
                        new=new_category.local,
                    )
                    yield (
                        f"Category updated from {old_name.upper()} to "
                        f"{new_category.local.upper()} for TITLE: {summary.title}"
                    )
                else:
                    yield f"Category NOT updated for TITLE: {summary.title}"
