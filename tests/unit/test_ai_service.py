"""AiService parsing, tier routing and rate limiting, using langchain fakes."""

from __future__ import annotations

import asyncio

import fakeredis
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from redis.exceptions import ConnectionError as RedisConnectionError

from newsdesk.schemas.schemas import (
    MessageResponse,
    SimilarityResponse,
    SummaryResponse,
    ValidationResponse,
)
from newsdesk.services.ai_service import AiService, parse_structured
from newsdesk.services.rate_limiter import RateLimiter
from tests.support import make_settings


def _service(light: list[str], pro: list[str] | None = None, **kwargs) -> AiService:
    models = {"light": FakeListChatModel(responses=light)}
    if pro is not None:
        models["pro"] = FakeListChatModel(responses=pro)
    return AiService(kwargs.pop("settings", make_settings()), chat_models=models, **kwargs)


class _BrokenModel:
    async def ainvoke(self, messages):
        raise RuntimeError("quota exceeded")


class TestParseStructured:
    def test_plain_json(self):
        parsed = parse_structured('{"title": "T", "article": "A", "category": 3}', SummaryResponse)
        assert parsed == SummaryResponse(title="T", article="A", category=3)

    def test_fenced_json(self):
        raw = '```json\n{"isValid": true, "reason": "fine", "topic": "Economy"}\n```'
        parsed = parse_structured(raw, ValidationResponse)
        assert parsed.is_valid is True
        assert parsed.topic == "Economy"

    def test_string_category_is_coerced(self):
        parsed = parse_structured('{"title": "T", "category": "7"}', SummaryResponse)
        assert parsed.category == 7

    @pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", "```\n```"])
    def test_garbage_is_none(self, raw):
        assert parse_structured(raw, SummaryResponse) is None


class TestAiService:
    def test_light_tier_answers_summaries(self):
        ai = _service(['{"title": "Light", "article": "a", "category": 1}'], ['{"bad": 1}'])
        result = asyncio.run(ai.generate_structured_response("sys", "input", SummaryResponse()))
        assert result.title == "Light"

    def test_pro_tier_answers_similarity(self):
        ai = _service(["{}"], ['{"similar_summary_id": "abc", "reason": "same event"}'])
        result = asyncio.run(
            ai.generate_structured_response("sys", "input", SimilarityResponse())
        )
        assert result.similar_summary_id == "abc"
        assert result.reason == "same event"

    def test_unparsable_answer_is_none(self):
        ai = _service(["Sorry, I cannot help with that."])
        assert asyncio.run(ai.generate_structured_response("s", "i", SummaryResponse())) is None

    def test_provider_error_is_none(self):
        ai = AiService(make_settings(), chat_models={"light": _BrokenModel()})
        assert asyncio.run(ai.generate_structured_response("s", "i", SummaryResponse())) is None

    def test_unmapped_response_type_raises(self):
        ai = _service(["{}"])
        with pytest.raises(ValueError):
            asyncio.run(ai.generate_structured_response("s", "i", MessageResponse(message="x")))


class TestAiRateLimiting:
    def _run(self, settings, calls: int):
        sleeps: list[float] = []

        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)

        async def scenario():
            redis = fakeredis.FakeAsyncRedis(decode_responses=True)
            try:
                ai = AiService(
                    settings,
                    rate_limiter=RateLimiter(redis),
                    chat_models={"light": FakeListChatModel(responses=['{"title": "ok"}'])},
                    sleep=fake_sleep,
                )
                return [
                    await ai.generate_structured_response("s", "i", SummaryResponse())
                    for _ in range(calls)
                ]
            finally:
                await redis.aclose()

        return asyncio.run(scenario()), sleeps

    def test_over_budget_call_is_rejected(self):
        settings = make_settings(ai_requests_per_minute_light=1, ai_max_wait_seconds=0)
        results, sleeps = self._run(settings, 2)
        assert results[0].title == "ok"
        assert results[1] is None
        assert sleeps == []

    def test_over_budget_call_waits_for_its_slot(self):
        settings = make_settings(ai_requests_per_minute_light=1, ai_max_wait_seconds=120)
        results, sleeps = self._run(settings, 2)
        assert [r.title for r in results] == ["ok", "ok"]
        assert len(sleeps) == 1
        assert 55 < sleeps[0] <= 60

    def test_unreachable_limiter_is_none(self):
        class UnreachableLimiter:
            async def acquire(self, key, rpm, max_wait):
                raise RedisConnectionError("connection refused")

        ai = AiService(
            make_settings(),
            rate_limiter=UnreachableLimiter(),
            chat_models={"light": FakeListChatModel(responses=['{"title": "ok"}'])},
        )
        assert asyncio.run(ai.generate_structured_response("s", "i", SummaryResponse())) is None
