"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
VIP wager tracker, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from vip_wager_tracker.enums import SetAdjustmentPolicy, Timeframe

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_GOATED_API_URL = "https://apis.goated.com/user/affiliate/referral-leaderboard/2RW440E"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ExternalApiSettings(BaseSettings):
    """Affiliate leaderboard API settings."""

    model_config = SettingsConfigDict(env_prefix="GOATED_API_", extra="ignore")

    url: str = Field(
        default=DEFAULT_GOATED_API_URL,
        alias="GOATED_API_URL",
        description="Referral leaderboard endpoint",
    )
    token: SecretStr | None = Field(
        default=None,
        alias="GOATED_API_TOKEN",
        description="Bearer token for the leaderboard endpoint",
    )
    timeout_seconds: float = Field(
        default=20.0,
        alias="GOATED_API_TIMEOUT_SECONDS",
        ge=20.0,
        le=60.0,
        description="Per-request timeout",
    )
    page_size: int = Field(
        default=50,
        alias="GOATED_API_PAGE_SIZE",
        ge=1,
        le=1000,
        description="Entries requested per page during a full sync",
    )
    single_user_page_size: int = Field(
        default=1000,
        alias="GOATED_API_SINGLE_USER_PAGE_SIZE",
        ge=1,
        le=10_000,
        description="Entries requested when scanning for a single user",
    )
    page_delay_seconds: float = Field(
        default=0.1,
        alias="GOATED_API_PAGE_DELAY_SECONDS",
        ge=0.0,
        le=10.0,
        description="Fixed pause between page fetches",
    )
    user_agent: str = Field(
        default="vip-wager-tracker/0.1",
        alias="GOATED_API_USER_AGENT",
        description="User-Agent header sent to the API",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("GOATED_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class CircuitBreakerSettings(BaseSettings):
    """External API circuit breaker settings."""

    model_config = SettingsConfigDict(env_prefix="CIRCUIT_BREAKER_", extra="ignore")

    failure_threshold: int = Field(
        default=5,
        alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD",
        ge=1,
        le=100,
        description="Consecutive failures before the circuit opens",
    )
    cooldown_seconds: float = Field(
        default=120.0,
        alias="CIRCUIT_BREAKER_COOLDOWN_SECONDS",
        ge=1.0,
        le=3600.0,
        description="How long the circuit stays open",
    )


class WagerSettings(BaseSettings):
    """Wager computation, caching and sync scheduling settings."""

    model_config = SettingsConfigDict(env_prefix="WAGER_", extra="ignore")

    computed_stats_cache_ttl_seconds: int = Field(
        default=300,
        alias="WAGER_COMPUTED_STATS_CACHE_TTL_SECONDS",
        ge=1,
        le=86_400,
        description="Redis TTL for computed_wager_stats:{user_id} entries",
    )
    leaderboard_cache_ttl_seconds: int = Field(
        default=300,
        alias="WAGER_LEADERBOARD_CACHE_TTL_SECONDS",
        ge=1,
        le=86_400,
        description="Redis TTL for leaderboard:* entries",
    )
    set_adjustment_policy: SetAdjustmentPolicy = Field(
        default=SetAdjustmentPolicy.FROZEN_DELTA,
        alias="WAGER_SET_ADJUSTMENT_POLICY",
        description="How 'set' adjustments react to later raw-stat changes",
    )
    default_sync_timeframe: Timeframe = Field(
        default=Timeframe.MONTHLY,
        alias="WAGER_DEFAULT_SYNC_TIMEFRAME",
        description="Timeframe used when a sync is triggered without one",
    )
    sync_interval_seconds: int = Field(
        default=900,
        alias="WAGER_SYNC_INTERVAL_SECONDS",
        ge=60,
        le=86_400,
        description="Interval between scheduled full syncs",
    )
    sync_log_retention_days: int = Field(
        default=30,
        alias="WAGER_SYNC_LOG_RETENTION_DAYS",
        ge=1,
        le=3650,
        description="Sync logs older than this are pruned by the scheduler",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from vip_wager_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    external_api: ExternalApiSettings = Field(
        default_factory=lambda: ExternalApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    circuit_breaker: CircuitBreakerSettings = Field(
        default_factory=lambda: CircuitBreakerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    wager: WagerSettings = Field(
        default_factory=lambda: WagerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "external_api": {
                "url": self.external_api.url,
                "token": "(set)" if self.external_api.token else "(not set)",
                "timeout_seconds": str(self.external_api.timeout_seconds),
                "page_size": str(self.external_api.page_size),
            },
            "circuit_breaker": {
                "failure_threshold": str(self.circuit_breaker.failure_threshold),
                "cooldown_seconds": str(self.circuit_breaker.cooldown_seconds),
            },
            "wager": {
                "set_adjustment_policy": self.wager.set_adjustment_policy.value,
                "default_sync_timeframe": self.wager.default_sync_timeframe.value,
                "sync_interval_seconds": str(self.wager.sync_interval_seconds),
            },
            "log_level": self.log_level,
        }

    def validate_requirements(self, *, command: Literal["run", "sync", "rankings", "init-db"]) -> None:
        """Validate command-specific requirements.

        Commands that talk to the external API refuse to start without a token.
        """
        if command in ("run", "sync") and self.external_api.token is None:
            raise ValueError("GOATED_API_TOKEN is required to sync from the external API")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
