"""Application settings and logging configuration."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, Literal

import structlog
from pydantic import AnyHttpUrl, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_CONTEXT: dict[str, str] = {"environment": "development", "service": "pulse-tracker"}


def _require_asyncpg(value: str, field_name: str) -> str:
    """Ensure SQLAlchemy uses the asyncpg driver."""
    if not value.startswith("postgresql+asyncpg://"):
        raise ValueError(f"{field_name} must start with 'postgresql+asyncpg://'.")
    return value


class AppSettings(BaseModel):
    """Application identity and runtime settings."""

    environment: Literal["development", "staging", "production"]
    service: str = "pulse-tracker"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    frontend_url: AnyHttpUrl = Field(default="http://localhost:3000", validate_default=True)
    cookie_secure: bool = False


class DatabaseSettings(BaseModel):
    """Relational store connection settings."""

    url: str = Field(description="Async SQLAlchemy URL using asyncpg driver.")

    @field_validator("url")
    @classmethod
    def validate_asyncpg_url(cls, value: str) -> str:
        """Ensure SQLAlchemy uses the asyncpg driver."""
        return _require_asyncpg(value, "database.url")


class AnalyticsSettings(BaseModel):
    """Analytical store connection and audit batching settings."""

    url: str | None = Field(
        default=None,
        description="Async SQLAlchemy URL for the analytical store; defaults to database.url.",
    )
    batch_size: int = Field(default=100, ge=1)
    flush_interval_seconds: float = Field(default=5.0, gt=0)
    queue_max_size: int = Field(default=10000, ge=1)

    @field_validator("url")
    @classmethod
    def validate_asyncpg_url(cls, value: str | None) -> str | None:
        """Ensure SQLAlchemy uses the asyncpg driver when configured."""
        if value is None:
            return value
        return _require_asyncpg(value, "analytics.url")


class RedisSettings(BaseModel):
    """Redis connection settings."""

    url: str = Field(description="Redis URL.")

    @field_validator("url")
    @classmethod
    def validate_redis_url(cls, value: str) -> str:
        """Ensure the Redis URL uses a supported scheme."""
        if not value.startswith(("redis://", "rediss://")):
            raise ValueError("redis.url must start with 'redis://' or 'rediss://'.")
        return value


class JWTSettings(BaseModel):
    """JWT signing and lifetime settings."""

    algorithm: Literal["HS256"] = "HS256"
    access_token_secret: SecretStr
    refresh_token_secret: SecretStr
    access_token_ttl_seconds: int = Field(default=86400, ge=1)
    refresh_token_ttl_seconds: int = Field(default=2592000, ge=1)


class OAuthSettings(BaseModel):
    """Google OAuth/OIDC settings."""

    google_client_id: str
    google_client_secret: SecretStr
    google_redirect_uri: AnyHttpUrl


class RateLimitSettings(BaseModel):
    """In-memory rate limiting thresholds."""

    default_requests_per_minute: int = Field(default=120, ge=1)
    auth_requests_per_minute: int = Field(default=20, ge=1)
    sync_requests_per_minute: int = Field(default=60, ge=1)


class SessionSettings(BaseModel):
    """Device session housekeeping settings."""

    sweep_interval_seconds: int = Field(default=3600, ge=1)


class Settings(BaseSettings):
    """Root application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: AppSettings
    database: DatabaseSettings
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    redis: RedisSettings
    jwt: JWTSettings
    oauth: OAuthSettings
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)

    @property
    def analytics_url(self) -> str:
        """Resolve the analytical store URL, falling back to the relational store."""
        return self.analytics.url or self.database.url


def _standard_log_fields(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Inject required structured logging fields."""
    context_vars = structlog.contextvars.get_contextvars()
    event_dict.setdefault("correlation_id", str(context_vars.get("correlation_id", "unknown")))
    event_dict.setdefault("environment", _LOG_CONTEXT["environment"])
    event_dict.setdefault("service", _LOG_CONTEXT["service"])
    event_dict.setdefault("timestamp", datetime.now(UTC).isoformat())
    return event_dict


def configure_structlog(settings: Settings) -> None:
    """Configure structlog for JSON output with required fields."""
    _LOG_CONTEXT["environment"] = settings.app.environment
    _LOG_CONTEXT["service"] = settings.app.service

    log_level = getattr(logging, settings.app.log_level, logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _standard_log_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Load and cache application settings from environment variables."""
    return Settings()
