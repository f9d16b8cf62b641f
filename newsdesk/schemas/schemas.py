"""
Pydantic v2 schemas: AI response shapes, broker messages, cached read models
and API responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from newsdesk.models.models import Language, SummaryState


# ── AI responses ────────────────────────────────────────────
class SummaryResponse(BaseModel):
    title: str = ""
    article: str = ""
    category: int = 0

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: object) -> int:
        try:
            return int(v)  # models sometimes answer "7" or 7.0
        except (TypeError, ValueError):
            return 0


class ValidationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(default=False, alias="isValid")
    reason: str = ""
    topic: str = ""


class TranslationResponse(BaseModel):
    title: str = ""
    article: str = ""


class SimilarityResponse(BaseModel):
    similar_summary_id: str | None = None
    reason: str = ""


class ReferenceResponse(BaseModel):
    title: str = ""
    url: str = ""
    reason: str = ""


class DigestResponse(BaseModel):
    title: str = ""
    content: str = ""
    references: list[ReferenceResponse] = []


# ── Broker messages ─────────────────────────────────────────
class IndexRequest(BaseModel):
    summary_id: str
    op: Literal["add", "delete"] = "add"


class SimilarRequest(BaseModel):
    summary_id: str


# ── Cached read models ──────────────────────────────────────
class CachedSimilarReference(BaseModel):
    id: str
    title: str
    source: str
    generated_at: datetime
    reason: str = ""


class CachedSummary(BaseModel):
    id: str
    title: str
    article: str
    language: Language
    state: SummaryState
    reason: str | None = None
    generated_at: datetime
    category_id: int
    category: str
    category_local: str
    source_id: str
    source: str
    article_title: str
    article_url: str
    similarities: list[CachedSimilarReference] = []
    # offset to pass to the "load more similarities" read; None when nothing is left
    similarities_next_offset: int | None = None


class CachedDigestReference(BaseModel):
    summary_id: str
    title: str
    url: str
    reason: str = ""
    source: str = ""


class CachedDigest(BaseModel):
    id: str
    title: str
    content: str
    language: Language
    generated_at: datetime
    period_start: datetime
    period_end: datetime
    references: list[CachedDigestReference] = []


# ── API ─────────────────────────────────────────────────────
class SimilaritiesPage(BaseModel):
    items: list[CachedSimilarReference]
    next_offset: int | None = None


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    environment: str
    database: str = "connected"
    cache: str = "connected"


class RebuildResponse(BaseModel):
    summaries: int
    digests: int


class TranslateResponse(BaseModel):
    summary_id: str
    translated_id: str | None = None
    language: Language
