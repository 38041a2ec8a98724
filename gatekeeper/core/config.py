"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment."""

    return LogSettings()


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment."""

    return RateLimitSettings()


def _build_redis_settings() -> "RedisSettings":
    """Build Redis settings from environment."""

    return RedisSettings()


def parse_key_list(keys_string: str | None) -> frozenset[str]:
    """Parse a comma-separated list of rate limit keys.

    Args:
        keys_string: Comma-separated keys, or None.

    Returns:
        Frozen set of trimmed, non-empty keys.

    Examples:
        >>> sorted(parse_key_list("10.0.0.1, 10.0.0.2 ,"))
        ['10.0.0.1', '10.0.0.2']
        >>> parse_key_list(None)
        frozenset()
    """
    if not keys_string:
        return frozenset()

    return frozenset(key.strip() for key in keys_string.split(",") if key.strip())


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        "INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where application logs are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int | None = Field(
        None,
        description="Rotate the log file after this many bytes (None disables rotation)",
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the correlation id",
    )
    event_log_path: str | None = Field(
        None,
        description="Append-only file receiving rate limit events",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Admission control configuration.

    Optional numeric fields left unset inherit from their primary counterpart
    (burst_window_ms and interval_ms from window_ms, tokens_per_interval from
    limit) when the policy is built.
    """

    enabled: bool = Field(
        True,
        description="Enable the admission middleware",
    )
    limit: int = Field(
        100,
        description="Maximum number of requests allowed per window (per key)",
        ge=0,
    )
    window_ms: int = Field(
        60_000,
        description="Fixed window size in milliseconds",
        ge=1,
    )
    burst_limit: int = Field(
        0,
        description="Extra requests allowed on top of the base limit (0 disables)",
        ge=0,
    )
    burst_window_ms: int | None = Field(
        None,
        description="Window of the burst overlay in milliseconds",
        ge=1,
    )
    token_bucket: bool = Field(
        False,
        description="Count with a token bucket instead of fixed windows",
    )
    tokens_per_interval: int | None = Field(
        None,
        description="Token bucket capacity",
        ge=1,
    )
    interval_ms: int | None = Field(
        None,
        description="Token bucket refill interval in milliseconds",
        ge=1,
    )
    allow_list: str | None = Field(
        None,
        description="Comma-separated keys that bypass rate limiting",
    )
    deny_list: str | None = Field(
        None,
        description="Comma-separated keys that are always rejected",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on responses",
    )
    metrics_enabled: bool = Field(
        False,
        description="Track per-key request/block counters",
    )
    log_events: bool = Field(
        False,
        description="Log every admission decision at INFO level",
    )
    store: Literal["memory", "redis"] = Field(
        "memory",
        description="Counter store backend",
    )
    store_timeout_ms: int | None = Field(
        None,
        description="Upper bound for a store call before it counts as unavailable",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Remote counter store connection settings."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    key_prefix: str = Field(
        "rl:",
        description="Prefix prepended to every counter key",
    )
    socket_timeout_seconds: float = Field(
        0.5,
        description="Socket timeout for Redis commands",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
