"""
Crawl orchestrator: sources -> articles -> AI summaries (state Created).

Per source:
  1. resolve the adapter and fetch its sitemap through the polite fetcher
  2. walk items newest first, skipping anything published before today (UTC)
     and any URL that already has an article
  3. extract the article text, persist the article, ask the AI for a summary
  4. persist the summary in the primary language and request a similarity check
A failing item or source is logged and skipped; the run always continues.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.adapters.base import NewsItem, SourceAdapter
from newsdesk.adapters.registry import AdapterRegistry
from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models import repositories
from newsdesk.models.models import (
    Category,
    Language,
    NewsArticle,
    NewsSource,
    NewsSummary,
    SummaryState,
    utcnow,
)
from newsdesk.schemas.schemas import SimilarRequest, SummaryResponse
from newsdesk.services.ai_service import AiService
from newsdesk.services.broker import SIMILAR_QUEUE, Broker
from newsdesk.services.crawler import PoliteFetcher

logger = get_logger(__name__)

SUMMARY_SYSTEM_PROMPT = """You are a news editor who shares a short personal take on what you read.
Read the article and retell its essence in your own words, at most three sentences,
without copying the original text.
- title: the original headline of the article
- article: your three-sentence take on the news
- category: the id of the single best matching category from this list:
{categories}
Write title and article in {language}. For category return only the numeric id."""


def format_category_prompt(categories: Sequence[Category]) -> str:
    return "\n".join(f"{c.id}. {c.local} ({c.name})" for c in categories)


def start_of_utc_day(now: datetime | None = None) -> datetime:
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)


class NewsProcessingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: AdapterRegistry,
        fetcher: PoliteFetcher,
        ai: AiService,
        broker: Broker,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._fetcher = fetcher
        self._ai = ai
        self._broker = broker
        self._settings = settings
        self._language = Language(settings.primary_language)

    async def process_sources(self) -> int:
        """Crawl every active source once. Returns the number of summaries created."""
        async with self._session_factory() as session:
            sources = await repositories.get_active_sources(session)
            categories = await repositories.get_categories(session)

        category_ids = {c.id for c in categories}
        category_prompt = format_category_prompt(categories)
        created = 0

        for source in sources:
            try:
                created += await self._process_source(source, category_ids, category_prompt)
            except Exception as e:
                logger.error("source_failed", domain=source.domain, error=str(e), exc_info=True)

        logger.info("crawl_complete", sources=len(sources), summaries_created=created)
        return created

    async def _process_source(
        self, source: NewsSource, category_ids: set[int], category_prompt: str
    ) -> int:
        adapter = self._registry.create(source.adapter_key, source.domain)
        logger.info("source_processing", domain=source.domain, adapter=source.adapter_key)

        raw = await self._fetcher.fetch(adapter.sitemap_url, source.domain)
        items = adapter.parse_sitemap(raw)
        logger.info("sitemap_parsed", domain=source.domain, items=len(items))

        today = start_of_utc_day()
        created = 0
        for item in items:
            try:
                if await self._process_item(
                    item, source, adapter, today, category_ids, category_prompt
                ):
                    created += 1
            except Exception as e:
                logger.error("article_failed", url=item.url, error=str(e), exc_info=True)

        async with self._session_factory() as session:
            stored = await session.get(NewsSource, source.id)
            if stored is not None:
                stored.mark_crawled()
                await session.commit()
        return created

    async def _process_item(
        self,
        item: NewsItem,
        source: NewsSource,
        adapter: SourceAdapter,
        today: datetime,
        category_ids: set[int],
        category_prompt: str,
    ) -> bool:
        if item.published_at < today:
            logger.debug("article_too_old", url=item.url)
            return False

        async with self._session_factory() as session:
            if await repositories.article_exists(session, item.url):
                logger.debug("article_already_processed", url=item.url)
                return False

        html = await self._fetcher.fetch(item.url, source.domain)
        content = adapter.extract_content(html)
        if not content:
            logger.info("article_empty_content", url=item.url)
            return False

        async with self._session_factory() as session:
            article = NewsArticle(
                source_id=source.id,
                url=item.url,
                title=item.title,
                published_at=item.published_at,
                collected_at=utcnow(),
            )
            session.add(article)
            await session.commit()

            response = await self._summarize(content, category_prompt)
            if response is None:
                logger.error("summary_generation_failed", url=item.url)
                return False

            category_id = response.category
            if category_id not in category_ids:
                logger.warning(
                    "summary_category_defaulted",
                    url=item.url,
                    returned=category_id,
                    default=self._settings.default_category_id,
                )
                category_id = self._settings.default_category_id

            summary = NewsSummary(
                article_id=article.id,
                title=response.title or item.title,
                body=response.article,
                category_id=category_id,
                language=self._language,
                state=SummaryState.CREATED,
                generated_at=utcnow(),
            )
            session.add(summary)
            await session.commit()

        logger.info("summary_created", summary_id=summary.id, url=item.url, category_id=category_id)
        if self._settings.similarity_enabled:
            await self._broker.publish(SIMILAR_QUEUE, SimilarRequest(summary_id=summary.id))
        return True

    async def _summarize(self, content: str, category_prompt: str) -> SummaryResponse | None:
        system_prompt = SUMMARY_SYSTEM_PROMPT.format(
            categories=category_prompt, language=self._language.description
        )
        return await self._ai.generate_structured_response(
            system_prompt,
            content,
            SummaryResponse(title="Original headline", article="Three-sentence take", category=1),
        )
