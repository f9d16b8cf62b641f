"""
Pipeline scheduler: two independent, non-overlapping cycles.

  summary pipeline: crawl -> validate -> translate (per target language)
  digest pipeline:  compose (per language) -> post

Each cycle is a single worker loop (run under its lock, then wait for the
interval or the stop event). A failed run is logged and the loop goes on.
Operator-triggered runs take the same lock, so a cycle never runs twice at
once.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar
from zoneinfo import ZoneInfo

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger, log_context
from newsdesk.models.models import Language, utcnow
from newsdesk.pipeline.digest import DigestService
from newsdesk.pipeline.news_processing import NewsProcessingService
from newsdesk.pipeline.translation import SummaryTranslationService
from newsdesk.pipeline.validation import SummaryValidationService

logger = get_logger(__name__)

T = TypeVar("T")


class PipelineScheduler:
    def __init__(
        self,
        settings: Settings,
        news: NewsProcessingService,
        validation: SummaryValidationService,
        translation: SummaryTranslationService,
        digest: DigestService,
        stop: asyncio.Event | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._news = news
        self._validation = validation
        self._translation = translation
        self._digest = digest
        self._stop = stop or asyncio.Event()
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)
        self._summary_lock = asyncio.Lock()
        self._digest_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []

    @property
    def summary_busy(self) -> bool:
        return self._summary_lock.locked()

    @property
    def digest_busy(self) -> bool:
        return self._digest_lock.locked()

    # ── Cycles ──────────────────────────────────────────────
    async def run_exclusive(self, stage: Callable[[], Awaitable[T]]) -> T:
        """Run a single summary-pipeline stage under the summary cycle's lock."""
        async with self._summary_lock:
            return await stage()

    async def run_summary_pipeline(self) -> None:
        async with self._summary_lock:
            s = self._settings
            logger.info("summary_pipeline_started")
            if s.scheduler_summary_task:
                await self._news.process_sources()
            if s.scheduler_validation_task:
                await self._validation.validate_new_summaries()
            if s.scheduler_translation_task:
                for lang in s.translation_languages:
                    await self._translation.translate_pending(Language(lang))
            logger.info("summary_pipeline_finished")

    async def run_digest_pipeline(self) -> None:
        async with self._digest_lock:
            s = self._settings
            logger.info("digest_pipeline_started")
            for lang in s.digest_languages:
                language = Language(lang)
                try:
                    if s.scheduler_digest_task:
                        await self._digest.compose(language)
                    if s.scheduler_post_task:
                        await self._digest.post(language)
                except Exception as e:
                    logger.error(
                        "digest_pipeline_language_failed",
                        language=lang,
                        error=str(e),
                        exc_info=True,
                    )
            logger.info("digest_pipeline_finished")

    def digest_inactive(self, now: datetime | None = None) -> bool:
        """True inside the configured local-hour window [start, end)."""
        window = self._settings.digest_inactivity_range
        if window is None:
            return False
        start, end = window
        hour = (now or self._clock()).astimezone(self._tz).hour
        if start <= end:
            return start <= hour < end
        return hour >= start or hour < end

    async def _scheduled_digest(self) -> None:
        if self.digest_inactive():
            logger.info("digest_pipeline_inactive", window=self._settings.digest_inactivity_hours)
            return
        await self.run_digest_pipeline()

    # ── Loops ───────────────────────────────────────────────
    async def _loop(self, name: str, run: Callable[[], Awaitable[None]], interval: float) -> None:
        logger.info("scheduler_loop_started", loop=name, interval=interval)
        while not self._stop.is_set():
            with log_context(cycle=name, run_id=uuid.uuid4().hex[:8]):
                try:
                    await run()
                except Exception as e:
                    logger.error("scheduler_run_failed", loop=name, error=str(e), exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                pass
        logger.info("scheduler_loop_stopped", loop=name)

    def start(self) -> list[asyncio.Task]:
        s = self._settings
        self._tasks = [
            asyncio.create_task(
                self._loop(
                    "summary", self.run_summary_pipeline, s.summary_pipeline_interval_seconds
                )
            ),
            asyncio.create_task(
                self._loop("digest", self._scheduled_digest, s.digest_pipeline_interval_seconds)
            ),
        ]
        return self._tasks

    async def stop(self) -> None:
        """Signal the loops and wait for the in-flight runs to finish."""
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
