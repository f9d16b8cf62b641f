"""
Centralised configuration via Pydantic Settings.

Reads from .env in dev and from plain environment variables in production.
Every pipeline tunable lives here; services receive a Settings instance
instead of reading the environment themselves.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Application ─────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    api_key: str = "change-me"

    # ── Database ────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./dev.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_url(cls, v: str) -> str:
        """Hosting providers hand out postgres:// but SQLAlchemy needs postgresql+asyncpg://."""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    # ── Redis (cache, rate limiter, broker) ─────────────────
    redis_url: str = "redis://localhost:6379/0"

    # ── LLM: Gemini ────────────────────────────────────────
    google_api_key: str = ""
    model_light: str = "gemini-2.5-flash"
    model_pro: str = "gemini-2.5-pro"
    # response type name -> model tier
    ai_response_tiers: dict[str, Literal["light", "pro"]] = {
        "SummaryResponse": "light",
        "ValidationResponse": "light",
        "TranslationResponse": "light",
        "SimilarityResponse": "pro",
        "DigestResponse": "pro",
    }
    ai_requests_per_minute_light: int = 15
    ai_requests_per_minute_pro: int = 5
    ai_max_wait_seconds: int = 120
    ai_temperature: float = 0.2

    # ── Crawler politeness ─────────────────────────────────
    crawler_use_random_delay: bool = True
    crawler_min_delay_ms: int = 2000
    crawler_max_delay_ms: int = 5000
    crawler_min_request_interval_seconds: float = 2.0
    crawler_timeout_seconds: float = 30.0

    # ── Processing ──────────────────────────────────────────
    primary_language: Literal["ru", "en"] = "ru"
    translation_languages: list[Literal["ru", "en"]] = ["en"]
    digest_languages: list[Literal["ru", "en"]] = ["ru", "en"]
    default_category_id: int = 16
    timezone: str = "Asia/Bishkek"
    country: str = "Kyrgyzstan"
    currency: str = "KGS"

    # ── Similarity / search ─────────────────────────────────
    similarity_enabled: bool = True
    similarity_max_candidates: int = 30
    similarity_inline_references: int = 3
    search_enabled: bool = False

    # ── Cache ───────────────────────────────────────────────
    cache_max_summaries: int = 1000
    cache_max_digests: int = 200
    cache_entry_ttl_seconds: int = 7 * 24 * 3600
    cache_lock_timeout_seconds: int = 300

    # ── Digest ──────────────────────────────────────────────
    digest_min_corpus: int = 10
    digest_min_interval_hours: float = 1.0
    digest_default_lookback_hours: float = 12.0
    digest_post_hours: str = "7-22"

    @property
    def digest_post_hours_range(self) -> tuple[int, int]:
        start, end = self.digest_post_hours.split("-")
        return int(start), int(end)

    # ── Scheduler ───────────────────────────────────────────
    scheduler_enabled: bool = False
    scheduler_summary_task: bool = True
    scheduler_validation_task: bool = True
    scheduler_translation_task: bool = True
    scheduler_digest_task: bool = True
    scheduler_post_task: bool = False
    summary_pipeline_interval_seconds: float = 300.0
    digest_pipeline_interval_seconds: float = 1800.0
    # local hours [start, end) during which the digest pipeline stays idle
    digest_inactivity_hours: str = ""

    @property
    def digest_inactivity_range(self) -> tuple[int, int] | None:
        if not self.digest_inactivity_hours:
            return None
        start, end = self.digest_inactivity_hours.split("-")
        return int(start), int(end)

    # ── Broker ──────────────────────────────────────────────
    broker_max_publish_attempts: int = 10_000
    broker_log_every: int = 100
    broker_pool_size: int = 8
    broker_block_ms: int = 5000
    broker_consumer_group: str = "newsdesk"

    # ── Email (digest posting) ─────────────────────────────
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_sender: str = "news@yourdomain.com"
    email_to: str = "you@example.com"

    @property
    def email_recipients(self) -> list[str]:
        return [e.strip() for e in self.email_to.split(",") if e.strip()]

    # ── Operator endpoints ─────────────────────────────────
    maintenance_rate_limit: str = Field(
        default="10/minute", description="slowapi limit applied to maintenance endpoints"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
