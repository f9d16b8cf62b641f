"""
Structured-response gateway to the LLM providers.

Model routing is tiered by response type (see Settings.ai_response_tiers):
  - light (Flash) for summaries, validation and translation
  - pro for similarity adjudication and digest composition
Every call passes through the shared rate limiter, bucketed per tier.
A failed call or an unparsable answer yields None, never an exception.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.services.rate_limiter import RateLimiter

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

_PROVIDER = "gemini"


def _content_text(content: str | list) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def parse_structured(raw: str, response_type: type[T]) -> T | None:
    """Parse a model answer into `response_type`; markdown fences are tolerated."""
    text = raw.strip()
    text = re.sub(r"^```(?:json)?\s*", "", text)
    text = re.sub(r"\s*```$", "", text).strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return response_type.model_validate(data)
    except ValidationError:
        return None


class AiService:
    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        chat_models: dict[str, BaseChatModel] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._chat_models: dict[str, BaseChatModel] = dict(chat_models or {})
        self._sleep = sleep

    def _tier_for(self, response_type: type[BaseModel]) -> str:
        tier = self._settings.ai_response_tiers.get(response_type.__name__)
        if tier is None:
            raise ValueError(f"No model tier mapping for {response_type.__name__}")
        return tier

    def _model_for(self, tier: str) -> BaseChatModel:
        if tier not in self._chat_models:
            from langchain_google_genai import ChatGoogleGenerativeAI

            model = self._settings.model_pro if tier == "pro" else self._settings.model_light
            self._chat_models[tier] = ChatGoogleGenerativeAI(
                model=model,
                temperature=self._settings.ai_temperature,
                google_api_key=self._settings.google_api_key,
            )
        return self._chat_models[tier]

    def _rpm_for(self, tier: str) -> int:
        if tier == "pro":
            return self._settings.ai_requests_per_minute_pro
        return self._settings.ai_requests_per_minute_light

    async def generate_structured_response(
        self, system_prompt: str, user_input: str, sample: T
    ) -> T | None:
        response_type = type(sample)
        tier = self._tier_for(response_type)

        if self._rate_limiter is not None:
            try:
                wait = await self._rate_limiter.acquire(
                    f"ratelimit:{_PROVIDER}:{tier}",
                    self._rpm_for(tier),
                    self._settings.ai_max_wait_seconds,
                )
            except (RedisError, OSError) as e:
                logger.error("ai_rate_limiter_unavailable", tier=tier, error=str(e))
                return None
            if wait is None:
                logger.warning("ai_call_rejected", response_type=response_type.__name__, tier=tier)
                return None
            if wait > 0:
                await self._sleep(wait)

        sample_json = sample.model_dump_json(by_alias=True, indent=2)
        messages = [
            SystemMessage(
                content=(
                    f"{system_prompt}\n\n"
                    "Format your response as a JSON object with the following structure:\n"
                    f"{sample_json}\n"
                    "Output ONLY valid JSON, no markdown fences."
                )
            ),
            HumanMessage(content=user_input),
        ]

        try:
            response = await self._model_for(tier).ainvoke(messages)
        except Exception as e:
            logger.error(
                "ai_call_failed", response_type=response_type.__name__, tier=tier, error=str(e)
            )
            return None

        raw = _content_text(response.content)
        parsed = parse_structured(raw, response_type)
        if parsed is None:
            logger.error(
                "ai_response_unparsable",
                response_type=response_type.__name__,
                preview=raw[:200],
            )
        return parsed
