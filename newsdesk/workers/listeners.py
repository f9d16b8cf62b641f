"""
Broker consumers: similarity requests and search-index requests.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.models.models import Language
from newsdesk.pipeline.similarity import SimilarityService
from newsdesk.schemas.schemas import IndexRequest, SimilarRequest
from newsdesk.services.broker import INDEX_QUEUE, SIMILAR_QUEUE, Broker

logger = get_logger(__name__)


class VectorSearchService(Protocol):
    async def index_summary(self, summary_id: str) -> None: ...

    async def delete_summary(self, summary_id: str) -> None: ...

    async def search(
        self, query: str, language: Language, limit: int, category_id: int | None = None
    ) -> list[str]: ...


class IndexRequestHandler:
    def __init__(self, search: VectorSearchService) -> None:
        self._search = search

    async def __call__(self, request: IndexRequest) -> None:
        if request.op == "add":
            await self._search.index_summary(request.summary_id)
        else:
            await self._search.delete_summary(request.summary_id)
        logger.info("index_request_handled", summary_id=request.summary_id, op=request.op)


class BrokerListeners:
    def __init__(
        self,
        broker: Broker,
        similarity: SimilarityService,
        settings: Settings,
        search: VectorSearchService | None = None,
        stop: asyncio.Event | None = None,
    ) -> None:
        self._broker = broker
        self._similarity = similarity
        self._settings = settings
        self._search = search
        self._stop = stop or asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def start(self) -> list[asyncio.Task]:
        s = self._settings
        if s.similarity_enabled:
            self._tasks.append(
                asyncio.create_task(
                    self._broker.consume(
                        SIMILAR_QUEUE,
                        SimilarRequest,
                        self._similarity.handle_request,
                        self._stop,
                        consumer_name="similar-1",
                    )
                )
            )
        if s.search_enabled:
            if self._search is None:
                logger.warning("index_listener_disabled", reason="no search service configured")
            else:
                self._tasks.append(
                    asyncio.create_task(
                        self._broker.consume(
                            INDEX_QUEUE,
                            IndexRequest,
                            IndexRequestHandler(self._search),
                            self._stop,
                            consumer_name="index-1",
                        )
                    )
                )
        return self._tasks

    async def stop(self) -> None:
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
