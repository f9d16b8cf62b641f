"""Rolling-window rate limiter behaviour against a Lua-capable fake Redis."""

from __future__ import annotations

import asyncio

import fakeredis
import pytest

from newsdesk.services.rate_limiter import RateLimiter

BUCKET = "ratelimit:gemini:light"


def _run(scenario):
    async def wrapper():
        redis = fakeredis.FakeAsyncRedis(decode_responses=True)
        try:
            return await scenario(RateLimiter(redis), redis)
        finally:
            await redis.aclose()

    return asyncio.run(wrapper())


class TestRateLimiter:
    def test_budget_admits_immediately(self):
        async def scenario(limiter, redis):
            return [await limiter.acquire(BUCKET, 3, 120, now=1000.0 + i) for i in range(3)]

        assert _run(scenario) == [0.0, 0.0, 0.0]

    def test_fourth_call_waits_for_oldest_to_leave_window(self):
        async def scenario(limiter, redis):
            for i in range(3):
                await limiter.acquire(BUCKET, 3, 120, now=1000.0 + i)
            wait = await limiter.acquire(BUCKET, 3, 120, now=1010.0)
            return wait, await redis.zcard(BUCKET)

        wait, size = _run(scenario)
        assert wait == pytest.approx(50.0)
        assert size == 4  # the future slot is reserved

    def test_wait_beyond_max_is_rejected_without_reservation(self):
        async def scenario(limiter, redis):
            for i in range(3):
                await limiter.acquire(BUCKET, 3, 120, now=1000.0 + i)
            wait = await limiter.acquire(BUCKET, 3, 10, now=1010.0)
            return wait, await redis.zcard(BUCKET)

        wait, size = _run(scenario)
        assert wait is None
        assert size == 3

    def test_queued_callers_get_successive_slots(self):
        async def scenario(limiter, redis):
            for i in range(3):
                await limiter.acquire(BUCKET, 3, 120, now=1000.0 + i)
            return [await limiter.acquire(BUCKET, 3, 120, now=1010.0) for _ in range(3)]

        assert _run(scenario) == pytest.approx([50.0, 51.0, 52.0])

    def test_window_expiry_frees_budget(self):
        async def scenario(limiter, redis):
            for i in range(3):
                await limiter.acquire(BUCKET, 3, 120, now=1000.0 + i)
            return await limiter.acquire(BUCKET, 3, 120, now=1070.0)

        assert _run(scenario) == 0.0

    def test_buckets_are_independent(self):
        async def scenario(limiter, redis):
            for i in range(3):
                await limiter.acquire(BUCKET, 3, 120, now=1000.0 + i)
            return await limiter.acquire("ratelimit:gemini:pro", 3, 120, now=1003.0)

        assert _run(scenario) == 0.0
