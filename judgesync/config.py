"""
JudgeSync - Configuration

Single source of truth for runtime configuration. Values come from the
environment, with an optional dotenv file (ENV_FILE, default .env).

Required for a working deployment:
  SUPABASE_DB_URL               - Postgres connection string
  REDIS_URL                     - Shared counter store for the rate limiter
  COURTLISTENER_API_KEY         - Upstream API token

Auth:
  SYNC_API_KEY                  - X-API-Key for sync trigger endpoints
  ADMIN_API_KEY                 - X-Admin-Key for status and admin actions
  COURTLISTENER_WEBHOOK_SECRET  - HMAC secret for inbound webhooks
  COURTLISTENER_WEBHOOK_VERIFY_TOKEN - Subscription handshake token

Usage:
    from judgesync.config import get_settings

    settings = get_settings()
    print(settings.redis_url)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # ENVIRONMENT
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment (dev, staging, prod)",
    )
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # =========================================================================
    # STORES
    # =========================================================================

    SUPABASE_DB_URL: str | None = Field(
        default=None,
        description="PostgreSQL connection string for the mirror and queue tables",
    )
    DB_POOL_MIN_SIZE: int = Field(default=1, ge=0)
    DB_POOL_MAX_SIZE: int = Field(default=5, ge=1)
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL backing the shared rate-limit windows",
    )

    # =========================================================================
    # UPSTREAM (CourtListener)
    # =========================================================================

    COURTLISTENER_API_KEY: str | None = Field(default=None)
    COURTLISTENER_BASE_URL: str = Field(
        default="https://www.courtlistener.com/api/rest/v4"
    )
    COURTLISTENER_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    COURTLISTENER_WEBHOOK_SECRET: str | None = Field(default=None)
    COURTLISTENER_WEBHOOK_VERIFY_TOKEN: str | None = Field(default=None)

    # =========================================================================
    # AUTH
    # =========================================================================

    SYNC_API_KEY: str | None = Field(
        default=None,
        description="Operator/cron key required on sync trigger endpoints",
    )
    ADMIN_API_KEY: str | None = Field(
        default=None,
        description="Admin key required on status and admin control endpoints",
    )

    # =========================================================================
    # RATE LIMITING
    # =========================================================================

    RATE_LIMIT_FAIL_OPEN: bool = Field(
        default=False,
        description="Allow requests when Redis is unreachable instead of raising",
    )
    COURTLISTENER_RATE_LIMIT_TOKENS: int = Field(default=40, ge=1)
    COURTLISTENER_RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, ge=1)

    # =========================================================================
    # SYNC RUNS
    # =========================================================================

    SYNC_TIME_BUDGET_SECONDS: float = Field(default=240.0, gt=0)
    SYNC_STALENESS_DAYS: int = Field(default=7, ge=0)
    SYNC_INTER_BATCH_DELAY_SECONDS: float = Field(default=1.0, ge=0)
    SYNC_MAX_ITEM_ATTEMPTS: int = Field(default=3, ge=1)
    SYNC_RETRY_BASE_DELAY_SECONDS: float = Field(default=1.0, ge=0)
    CIRCUIT_FAILURE_THRESHOLD: int = Field(default=5, ge=1)
    CIRCUIT_COOLDOWN_SECONDS: float = Field(default=60.0, gt=0)

    # =========================================================================
    # QUEUE / WORKER
    # =========================================================================

    JOB_LEASE_SECONDS: int = Field(
        default=900,
        ge=30,
        description="How long a claimed job stays leased without a heartbeat",
    )
    JOB_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    WORKER_POLL_INTERVAL_SECONDS: float = Field(default=5.0, gt=0)
    REAPER_INTERVAL_SECONDS: int = Field(default=60, ge=1)
    SCHEDULER_ENABLED: bool = Field(default=True)

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    WEBHOOK_DEDUPE_ENABLED: bool = Field(default=True)
    WEBHOOK_DEDUPE_TTL_SECONDS: int = Field(default=3600, ge=0)

    # =========================================================================
    # VALIDATION & NORMALIZATION
    # =========================================================================

    @model_validator(mode="before")
    @classmethod
    def _normalize_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Strip stray whitespace/quotes and normalize ENVIRONMENT spellings."""
        for key, value in list(values.items()):
            if isinstance(value, str):
                values[key] = value.strip().strip('"').strip("'").strip()

        for env_key in ("ENVIRONMENT", "environment"):
            if env_key not in values:
                continue
            raw = str(values[env_key]).lower()
            if raw == "production":
                values[env_key] = "prod"
            elif raw == "development":
                values[env_key] = "dev"
            elif raw not in ("dev", "staging", "prod"):
                raise ValueError(
                    f"ENVIRONMENT='{raw}' is invalid. Must be one of: dev, staging, prod"
                )
        return values

    # =========================================================================
    # PROPERTY ALIASES
    # =========================================================================

    @property
    def environment(self) -> str:
        return self.ENVIRONMENT

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def supabase_db_url(self) -> str | None:
        return self.SUPABASE_DB_URL

    @property
    def redis_url(self) -> str:
        return self.REDIS_URL

    @property
    def courtlistener_api_key(self) -> str | None:
        return self.COURTLISTENER_API_KEY

    @property
    def courtlistener_base_url(self) -> str:
        return self.COURTLISTENER_BASE_URL.rstrip("/")


# =========================================================================
# SINGLETON & FACTORY
# =========================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()


# =========================================================================
# LOGGING CONFIGURATION
# =========================================================================


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure application logging.

    Production gets structured JSON lines, everything else a readable console
    format.
    """
    from .core.logging import configure_structured_logging

    if settings is None:
        settings = get_settings()

    configure_structured_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.is_production,
        service_name="judgesync",
    )

    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
