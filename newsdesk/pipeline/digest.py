"""
Digest composer and the digest "post" step.

compose(language):
  window = [previous digest's period end (or now - lookback), now]
  skipped when the previous digest is younger than the minimum interval or
  the window holds fewer Validated summaries than the minimum corpus size.
  References the model returns are kept only when their URL belongs to an
  input summary, at most one per summary.

post(language):
  emails the newest cached digest once, inside the configured posting hours.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models import repositories
from newsdesk.models.models import (
    Digest,
    DigestReference,
    DigestState,
    Language,
    NewsArticle,
    NewsSummary,
    utcnow,
)
from newsdesk.schemas.schemas import DigestResponse, ReferenceResponse
from newsdesk.services.ai_service import AiService
from newsdesk.services.cache_service import CacheService
from newsdesk.services.email_service import EmailService

logger = get_logger(__name__)

DIGEST_SYSTEM_PROMPT = """You are a skilled news analyst from {country} who writes concise, informative digests.
Analyze the news summaries below and write a digest that highlights the most remarkable events.
Write the digest in {language}.

IMPORTANT: do NOT visit any URL; URLs are reference strings only.

For each remarkable event provide:
1. a clear explanation of why it is significant
2. a reference to the original source, copying its URL exactly as given

Keep the content succinct and focused on truly significant events.
The currency in {country} is {currency}."""


def serialize_corpus(corpus: list[tuple[NewsSummary, NewsArticle]], tz: ZoneInfo) -> str:
    """Corpus as plain text blocks, oldest first, times in local time."""
    blocks = []
    for summary, article in sorted(corpus, key=lambda pair: pair[0].generated_at):
        blocks.append(
            f"Time: {summary.generated_at.astimezone(tz):%H:%M}\n"
            f"Title: {summary.title}\n"
            f"Article: {summary.body}\n"
            f"URL: {article.url} (DO NOT VISIT - reference only)\n"
        )
    return "\n".join(blocks)


def select_references(
    references: list[ReferenceResponse], corpus: list[tuple[NewsSummary, NewsArticle]]
) -> list[tuple[NewsSummary, ReferenceResponse]]:
    """Keep references whose URL matches an input summary; first one wins per summary."""
    by_url = {article.url: summary for summary, article in corpus}
    selected: list[tuple[NewsSummary, ReferenceResponse]] = []
    seen: set[str] = set()
    for ref in references:
        summary = by_url.get(ref.url.strip())
        if summary is None:
            logger.warning("digest_reference_dropped", url=ref.url)
            continue
        if summary.id in seen:
            continue
        seen.add(summary.id)
        selected.append((summary, ref))
    return selected


def hour_in_range(hour: int, bounds: tuple[int, int]) -> bool:
    start, end = bounds
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


class DigestService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ai: AiService,
        cache: CacheService,
        email: EmailService,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._ai = ai
        self._cache = cache
        self._email = email
        self._settings = settings
        self._tz = ZoneInfo(settings.timezone)

    async def compose(self, language: Language, now: datetime | None = None) -> Digest | None:
        s = self._settings
        now = now or utcnow()

        async with self._session_factory() as session:
            last = await repositories.get_latest_digest(session, language)
            min_interval = timedelta(hours=s.digest_min_interval_hours)
            if last is not None and now - last.generated_at < min_interval:
                logger.info("digest_too_recent", language=language.value, last_id=last.id)
                return None

            if last is not None:
                period_start = last.period_end
            else:
                period_start = now - timedelta(hours=s.digest_default_lookback_hours)
            corpus = await repositories.get_digest_corpus(session, language, period_start, now)
            if len(corpus) < s.digest_min_corpus:
                logger.info(
                    "digest_corpus_too_small",
                    language=language.value,
                    corpus=len(corpus),
                    minimum=s.digest_min_corpus,
                )
                return None

            response = await self._ai.generate_structured_response(
                DIGEST_SYSTEM_PROMPT.format(
                    country=s.country, currency=s.currency, language=language.description
                ),
                serialize_corpus(corpus, self._tz),
                DigestResponse(
                    title="Digest title for the period",
                    content="Main digest content (no links here, only tailored content)",
                    references=[
                        ReferenceResponse(
                            title="Event title", url="Source URL", reason="Why the event matters"
                        )
                    ],
                ),
            )
            if response is None or not response.title or not response.content:
                logger.error("digest_generation_failed", language=language.value)
                return None

            selected = select_references(response.references, corpus)
            digest = Digest(
                title=response.title,
                content=response.content,
                language=language,
                period_start=period_start,
                period_end=now,
                generated_at=now,
                state=DigestState.PUBLISHED,
            )
            session.add(digest)
            await session.flush()
            session.add_all(
                [
                    DigestReference(
                        digest_id=digest.id,
                        summary_id=summary.id,
                        position=position,
                        title=ref.title,
                        url=ref.url.strip(),
                        reason=ref.reason,
                    )
                    for position, (summary, ref) in enumerate(selected)
                ]
            )
            for summary, _article in corpus:
                summary.mark_digested()
            await session.commit()

            await self._cache.refresh_digest(session, digest)

        logger.info(
            "digest_composed",
            digest_id=digest.id,
            language=language.value,
            corpus=len(corpus),
            references=len(selected),
        )
        return digest

    async def post(self, language: Language, now: datetime | None = None) -> bool:
        """Email the newest digest for `language` unless it was already sent."""
        now = now or utcnow()
        local_hour = now.astimezone(self._tz).hour
        if not hour_in_range(local_hour, self._settings.digest_post_hours_range):
            logger.info(
                "digest_post_outside_hours",
                language=language.value,
                hour=local_hour,
                allowed=self._settings.digest_post_hours,
            )
            return False

        latest = await self._cache.get_latest_digests(language, 0, 1)
        if not latest:
            logger.info("digest_post_nothing", language=language.value)
            return False
        digest = latest[0]

        if await self._cache.get_posted_digest_id(language) == digest.id:
            logger.info("digest_already_posted", language=language.value, digest_id=digest.id)
            return False

        await asyncio.to_thread(self._email.send_digest, digest)
        await self._cache.set_posted_digest_id(language, digest.id)
        logger.info("digest_posted", language=language.value, digest_id=digest.id)
        return True
