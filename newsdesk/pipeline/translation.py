"""Translation stage: sibling summaries in a target language."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.core.config import Settings
from newsdesk.core.errors import BrokerPublishError
from newsdesk.core.logging import get_logger
from newsdesk.models import repositories
from newsdesk.models.models import Language, NewsSummary, SummaryState, utcnow
from newsdesk.schemas.schemas import SimilarRequest, TranslationResponse
from newsdesk.services.ai_service import AiService
from newsdesk.services.broker import SIMILAR_QUEUE, Broker
from newsdesk.services.cache_service import CacheService

logger = get_logger(__name__)

TRANSLATION_SYSTEM_PROMPT = """You are a professional translator. Translate the news title and summary
below from {source} to {target}.
Keep the translation accurate but natural in the target language and keep the tone of the original.
Put the translations into the 'title' and 'article' fields."""


class SummaryTranslationService:
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

    async def translate_pending(self, target: Language) -> int:
        """Translate every Validated/Digested summary lacking a `target` sibling."""
        async with self._session_factory() as session:
            pending = await repositories.get_untranslated(session, target)
            ids = [s.id for s in pending]

        translated = 0
        for summary_id in ids:
            try:
                if await self.translate_one(summary_id, target) is not None:
                    translated += 1
            except Exception as e:
                logger.error(
                    "translation_item_failed",
                    summary_id=summary_id,
                    language=target.value,
                    error=str(e),
                    exc_info=True,
                )

        logger.info(
            "translation_complete", language=target.value, pending=len(ids), translated=translated
        )
        return translated

    async def translate_one(self, summary_id: str, target: Language) -> NewsSummary | None:
        """Create the `target` sibling of one summary; None when skipped or failed."""
        async with self._session_factory() as session:
            summary = await session.get(NewsSummary, summary_id)
            if summary is None:
                logger.warning("translation_summary_missing", summary_id=summary_id)
                return None
            if summary.language == target:
                logger.info("translation_same_language", summary_id=summary_id)
                return None
            if await repositories.has_sibling(session, summary.article_id, target):
                logger.info("translation_exists", summary_id=summary_id, language=target.value)
                return None

            try:
                response = await self._ai.generate_structured_response(
                    TRANSLATION_SYSTEM_PROMPT.format(
                        source=summary.language.description, target=target.description
                    ),
                    f"Title: {summary.title}\nArticle: {summary.body}",
                    TranslationResponse(title="Translated title", article="Translated summary"),
                )
                if response is None or not response.title or not response.article:
                    logger.error("translation_failed", summary_id=summary_id, language=target.value)
                    return None

                translated = NewsSummary(
                    article_id=summary.article_id,
                    title=response.title,
                    body=response.article,
                    category_id=summary.category_id,
                    language=target,
                    state=SummaryState.VALIDATED,
                    generated_at=utcnow(),
                )
                session.add(translated)
                await session.commit()

                await self._cache.refresh_summary(session, translated.id)
            except Exception as e:
                await session.rollback()
                logger.error(
                    "translation_error",
                    summary_id=summary_id,
                    language=target.value,
                    error=str(e),
                    exc_info=True,
                )
                return None

        logger.info(
            "summary_translated",
            summary_id=summary_id,
            translated_id=translated.id,
            language=target.value,
        )
        if self._settings.similarity_enabled:
            try:
                await self._broker.publish(SIMILAR_QUEUE, SimilarRequest(summary_id=translated.id))
            except BrokerPublishError as e:
                # the sibling is committed; only its grouping is lost
                logger.error(
                    "translation_similarity_request_lost",
                    translated_id=translated.id,
                    error=str(e),
                )
        return translated
