"""Configuration models for the ingestion and notification workers."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from pydantic import (
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

_RATE_LIMIT_RE = re.compile(r"^\d+(\.\d+)?/[smh]$")


class Settings(BaseSettings):
    """Environment settings for AlertFlow workers."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    database_url: str = Field(..., alias="DATABASE_URL", description="SQLAlchemy DSN of the event store.")
    redis_url: str = Field(..., alias="REDIS_URL", description="Celery broker/backend Redis DSN.")

    enable_fixture_fallback: bool = Field(
        False,
        alias="ENABLE_FIXTURE_FALLBACK",
        description="Parse bundled fixture payloads when a live fetch fails.",
    )
    fixtures_dir: Optional[str] = Field(
        None,
        alias="FIXTURES_DIR",
        description="Override directory for fixture payloads (defaults to the bundled ones).",
    )
    http_timeout_seconds: PositiveFloat = Field(30.0, alias="HTTP_TIMEOUT_SECONDS", description="Per-fetch timeout.")
    http_user_agent: str = Field("AlertFlow/1.0", alias="HTTP_USER_AGENT", description="User-Agent for upstream calls.")

    scheduler_reconcile_seconds: PositiveFloat = Field(
        60.0,
        alias="SCHEDULER_RECONCILE_SECONDS",
        description="How often the scheduler re-reads the source registry.",
    )
    scheduler_stagger_max_seconds: float = Field(
        30.0,
        ge=0,
        alias="SCHEDULER_STAGGER_MAX_SECONDS",
        description="Upper bound (exclusive) of the random first-poll delay.",
    )
    scheduler_min_interval_seconds: PositiveFloat = Field(
        60.0,
        alias="SCHEDULER_MIN_INTERVAL_SECONDS",
        description="Floor of the delay between two polls of one source.",
    )
    source_failure_threshold: PositiveInt = Field(
        10,
        alias="SOURCE_FAILURE_THRESHOLD",
        description="Consecutive failed polls before a source is disabled.",
    )

    notify_concurrency: PositiveInt = Field(5, alias="NOTIFY_CONCURRENCY", description="Dispatcher worker pool size.")
    notify_rate_limit: str = Field("100/m", alias="NOTIFY_RATE_LIMIT", description="Celery rate limit for delivery jobs.")
    notify_max_attempts: PositiveInt = Field(3, alias="NOTIFY_MAX_ATTEMPTS", description="Delivery attempts per job.")
    notify_backoff_base_seconds: PositiveFloat = Field(
        1.0,
        alias="NOTIFY_BACKOFF_BASE_SECONDS",
        description="Base delay of the exponential retry backoff.",
    )

    notify_timezone: str = Field("Asia/Almaty", alias="NOTIFY_TIMEZONE", description="Zone used to render alert times.")

    telegram_bot_token: Optional[SecretStr] = Field(None, alias="TELEGRAM_BOT_TOKEN", description="Telegram Bot API token.")
    telegram_api_base: str = Field(
        "https://api.telegram.org",
        alias="TELEGRAM_API_BASE",
        description="Telegram Bot API base URL.",
    )

    structlog_level: str = Field("INFO", alias="STRUCTLOG_LEVEL", description="Log level.")
    log_json: bool = Field(False, alias="LOG_JSON", description="Emit logs as JSON lines.")

    @field_validator("database_url")
    @classmethod
    def _validate_database_url(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("DATABASE_URL must be a valid DSN string.")
        return value

    @field_validator("redis_url")
    @classmethod
    def _validate_redis_url(cls, value: str) -> str:
        if not value.startswith(("redis://", "rediss://", "memory://")):
            raise ValueError("REDIS_URL must use the redis:// or rediss:// scheme.")
        return value

    @field_validator("notify_rate_limit")
    @classmethod
    def _validate_rate_limit(cls, value: str) -> str:
        limit = value.strip()
        if not _RATE_LIMIT_RE.match(limit):
            raise ValueError("NOTIFY_RATE_LIMIT must look like '100/m'.")
        return limit

    @field_validator("http_user_agent")
    @classmethod
    def _validate_user_agent(cls, value: str) -> str:
        agent = value.strip()
        if not agent:
            raise ValueError("HTTP_USER_AGENT cannot be blank.")
        return agent


@lru_cache()
def get_settings() -> Settings:
    """Return the Settings built from the environment."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"Environment validation failed: {exc}") from exc


def reset_settings_cache() -> None:
    """Clear the Settings cache (used by tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
