"""
Rolling 60-second leaky bucket shared by every quota-limited outbound call.

The whole admit/reserve/reject decision runs as one Lua script so concurrent
workers (and processes) sharing a bucket key never over-admit.
"""

from __future__ import annotations

import time
import uuid

from redis.asyncio import Redis

from newsdesk.core.logging import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60

# KEYS[1] bucket; ARGV: now, requests per minute, max wait, unique member suffix
_MINUTE_BUCKET_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local rpm = tonumber(ARGV[2])
local max_wait = tonumber(ARGV[3])
local member = ARGV[4]
local window = 60

local window_start = now - window
redis.call('ZREMRANGEBYSCORE', key, '-inf', window_start)

local in_window = redis.call('ZCARD', key)
if in_window < rpm then
    redis.call('ZADD', key, now, now .. ':' .. member)
    redis.call('EXPIRE', key, window + math.ceil(max_wait))
    return '0'
end

-- the entry whose expiry frees a slot for this call (reservations included)
local freeing = redis.call('ZRANGE', key, in_window - rpm, in_window - rpm, 'WITHSCORES')[2]
if freeing then
    local wait = tonumber(freeing) + window - now
    if wait <= max_wait then
        local slot = now + wait
        redis.call('ZADD', key, slot, slot .. ':' .. member)
        redis.call('EXPIRE', key, window + math.ceil(max_wait))
        return tostring(wait)
    end
end

return '-1'
"""


class RateLimiter:
    def __init__(self, redis: Redis) -> None:
        self._redis = redis
        self._script = redis.register_script(_MINUTE_BUCKET_SCRIPT)

    async def acquire(
        self,
        bucket_key: str,
        requests_per_minute: int,
        max_wait_seconds: float,
        now: float | None = None,
    ) -> float | None:
        """
        Reserve a slot in `bucket_key`.

        Returns the number of seconds the caller must sleep before making the
        call (0 for immediate admission), or None when the required wait
        exceeds `max_wait_seconds`; in that case nothing is reserved.
        """
        now = time.time() if now is None else now
        result = await self._script(
            keys=[bucket_key],
            args=[repr(now), requests_per_minute, max_wait_seconds, uuid.uuid4().hex],
        )
        try:
            wait = float(result)
        except (TypeError, ValueError):
            logger.error("rate_limiter_bad_result", bucket=bucket_key, result=result)
            return None

        if wait < 0:
            logger.warning(
                "rate_limit_rejected",
                bucket=bucket_key,
                requests_per_minute=requests_per_minute,
                max_wait=max_wait_seconds,
            )
            return None
        if wait > 0:
            logger.info("rate_limit_delayed", bucket=bucket_key, wait_seconds=wait)
        return wait
