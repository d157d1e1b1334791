"""Application configuration for Turnstile services."""
from __future__ import annotations

from functools import lru_cache
import logging
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


logger = logging.getLogger("turnstile.config")


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="Turnstile", description="Human readable application name.")
    environment: str = Field(default="development", description="Environment name for telemetry tagging.")
    log_level: str = Field(default="INFO", description="Application log level.")
    ratelimit_log_level: str | None = Field(
        default=None,
        description="Optional level for the per-request admission log, e.g. DEBUG.",
    )
    allowed_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["*"],
        description="List of CORS origins allowed to access the API.",
    )
    telemetry_endpoint: str | None = Field(
        default=None,
        description="Optional external telemetry collector endpoint for forwarding events.",
    )
    default_timeout_seconds: float = Field(default=10.0, description="HTTP timeout used for outbound telemetry requests.")
    redis_url: str | None = Field(
        default=None,
        description="Redis connection string for the counter store. The in-process store is used when unset.",
    )
    redis_socket_timeout: float | None = Field(
        default=5.0,
        description="Socket timeout applied to counter store commands.",
    )
    ratelimit_prefix: str = Field(default="limit", description="Key prefix for counters kept in Redis.")
    ratelimit_duration_ms: int = Field(default=3_600_000, ge=1, description="Length of a quota window in milliseconds.")
    ratelimit_max: int = Field(default=2500, ge=0, description="Maximum requests per identity per window.")
    ratelimit_header_remaining: str = Field(default="X-RateLimit-Remaining")
    ratelimit_header_reset: str = Field(default="X-RateLimit-Reset")
    ratelimit_header_total: str = Field(default="X-RateLimit-Limit")
    ratelimit_disable_header: bool = Field(default=False, description="Suppress the rate limit response headers.")
    ratelimit_throw: bool = Field(
        default=False,
        description="Raise throttling errors for an upstream handler instead of writing a 429 response.",
    )
    ratelimit_error_message: str | None = Field(default=None, description="Body used for throttled responses.")
    ratelimit_whitelist: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Identities that are never limited.",
    )
    ratelimit_blacklist: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Identities that are always rejected.",
    )

    @field_validator("ratelimit_whitelist", "ratelimit_blacklist", "allowed_origins", mode="before")
    def _split_identities(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings()
    if settings.redis_url is None:
        logger.warning("REDIS_URL is not set; quota counters are kept in process memory")
    return settings
