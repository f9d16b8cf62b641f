"""
Durable at-least-once message hand-off between pipeline stages.

Queues are Redis Streams read through a consumer group:
  - publish  = XADD on a channel rented from a pool (exclusive per call)
  - consume  = XREADGROUP, XACK after the handler succeeds
  - requeue  = re-XADD the payload and XACK the failed delivery in one MULTI
Handlers must be idempotent; a crash between handler success and XACK
redelivers the message.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from newsdesk.core.config import Settings
from newsdesk.core.errors import BrokerPublishError
from newsdesk.core.logging import get_logger, log_context

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

SIMILAR_QUEUE = "queue:similar"
INDEX_QUEUE = "queue:index"

_PAYLOAD_FIELD = "payload"


class ChannelPool:
    """Pool of Redis clients; a rented channel is exclusive until returned."""

    def __init__(self, factory: Callable[[], Redis], max_idle: int) -> None:
        self._factory = factory
        self._idle: asyncio.LifoQueue[Redis] = asyncio.LifoQueue(maxsize=max_idle)

    @asynccontextmanager
    async def rent(self) -> AsyncIterator[Redis]:
        try:
            channel = self._idle.get_nowait()
        except asyncio.QueueEmpty:
            channel = self._factory()
        try:
            yield channel
        finally:
            await self._return(channel)

    async def _return(self, channel: Redis) -> None:
        try:
            await channel.ping()
        except (RedisError, OSError) as e:
            logger.warning("broker_channel_discarded", error=str(e))
            await self._close(channel)
            return
        try:
            self._idle.put_nowait(channel)
        except asyncio.QueueFull:
            await self._close(channel)

    async def close(self) -> None:
        while not self._idle.empty():
            await self._close(self._idle.get_nowait())

    @staticmethod
    async def _close(channel: Redis) -> None:
        try:
            await channel.aclose()
        except (RedisError, OSError):
            pass  # already dead


class Broker:
    def __init__(
        self,
        pool: ChannelPool,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._group = settings.broker_consumer_group
        self._max_attempts = settings.broker_max_publish_attempts
        self._log_every = settings.broker_log_every
        self._block_ms = settings.broker_block_ms
        self._sleep = sleep

    async def _declare(self, channel: Redis, queue: str) -> None:
        """Create the stream and its consumer group if missing."""
        try:
            await channel.xgroup_create(queue, self._group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    # ── Produce ─────────────────────────────────────────────
    async def publish(self, queue: str, message: BaseModel) -> str:
        payload = message.model_dump_json()
        attempt = 0
        last_error: Exception | None = None

        while attempt < self._max_attempts:
            try:
                async with self._pool.rent() as channel:
                    await self._declare(channel, queue)
                    return await channel.xadd(queue, {_PAYLOAD_FIELD: payload})
            except (RedisError, OSError) as e:
                last_error = e
                attempt += 1
                if attempt == 1 or attempt % self._log_every == 0:
                    logger.error(
                        "broker_publish_failed", queue=queue, attempt=attempt, error=str(e)
                    )
                await self._sleep(min(0.1 * attempt, 1.0))

        raise BrokerPublishError(queue, attempt) from last_error

    # ── Consume ─────────────────────────────────────────────
    async def consume(
        self,
        queue: str,
        model: type[M],
        handler: Callable[[M], Awaitable[None]],
        stop: asyncio.Event,
        consumer_name: str = "worker-1",
    ) -> None:
        """Deliver messages to `handler` until `stop` is set.

        A Redis failure anywhere in the cycle ends it: the consumer sleeps,
        rents a channel again, re-declares the group and redelivers whatever
        it left pending.
        """
        logger.info("broker_consumer_started", queue=queue, consumer=consumer_name)
        while not stop.is_set():
            try:
                async with self._pool.rent() as channel:
                    await self._declare(channel, queue)
                    await self._drain_pending(channel, queue, consumer_name, model, handler, stop)
                    await self._read_new(channel, queue, consumer_name, model, handler, stop)
            except (RedisError, OSError) as e:
                logger.error("broker_consumer_failed", queue=queue, error=str(e))
                await self._sleep(1.0)

        logger.info("broker_consumer_stopped", queue=queue, consumer=consumer_name)

    async def _read_new(
        self,
        channel: Redis,
        queue: str,
        consumer_name: str,
        model: type[M],
        handler: Callable[[M], Awaitable[None]],
        stop: asyncio.Event,
    ) -> None:
        while not stop.is_set():
            response = await channel.xreadgroup(
                self._group,
                consumer_name,
                {queue: ">"},
                count=10,
                block=self._block_ms,
            )
            for _stream, entries in response or []:
                for entry_id, fields in entries:
                    await self._deliver_guarded(channel, queue, entry_id, fields, model, handler)

    async def _drain_pending(
        self,
        channel: Redis,
        queue: str,
        consumer_name: str,
        model: type[M],
        handler: Callable[[M], Awaitable[None]],
        stop: asyncio.Event,
    ) -> None:
        """Redeliver entries this consumer read but never acked (e.g. before a crash)."""
        while not stop.is_set():
            response = await channel.xreadgroup(
                self._group, consumer_name, {queue: "0"}, count=10
            )
            entries = [e for _stream, batch in response or [] for e in batch]
            if not entries:
                return
            logger.info("broker_pending_redelivery", queue=queue, count=len(entries))
            for entry_id, fields in entries:
                await self._deliver_guarded(
                    channel, queue, entry_id, fields or {}, model, handler
                )

    async def _deliver_guarded(
        self,
        channel: Redis,
        queue: str,
        entry_id: str,
        fields: dict,
        model: type[M],
        handler: Callable[[M], Awaitable[None]],
    ) -> None:
        try:
            await self._deliver(channel, queue, entry_id, fields, model, handler)
        except (RedisError, OSError) as e:
            # stays pending; redelivered by _drain_pending on the next cycle
            logger.error("broker_ack_failed", queue=queue, entry_id=entry_id, error=str(e))

    async def _deliver(
        self,
        channel: Redis,
        queue: str,
        entry_id: str,
        fields: dict,
        model: type[M],
        handler: Callable[[M], Awaitable[None]],
    ) -> None:
        payload = fields.get(_PAYLOAD_FIELD, "")
        logger.info("broker_message_received", queue=queue, entry_id=entry_id)

        try:
            message = model.model_validate_json(payload)
        except ValidationError as e:
            # redelivering an unparsable payload would loop forever
            logger.error("broker_message_dropped", queue=queue, entry_id=entry_id, error=str(e))
            await channel.xack(queue, self._group, entry_id)
            return

        try:
            with log_context(queue=queue, entry_id=entry_id):
                await handler(message)
        except Exception as e:
            logger.error(
                "broker_handler_failed", queue=queue, entry_id=entry_id, error=str(e), exc_info=True
            )
            pipe = channel.pipeline(transaction=True)
            pipe.xadd(queue, {_PAYLOAD_FIELD: payload})
            pipe.xack(queue, self._group, entry_id)
            await pipe.execute()
            return

        await channel.xack(queue, self._group, entry_id)
