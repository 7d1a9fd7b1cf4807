"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """FlowWatch application settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "FlowWatch"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ── PostgreSQL ───────────────────────────────────────────────
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "flowwatch"
    postgres_user: str = "flowwatch"
    postgres_password: str = "flowwatch_dev_password"
    database_url: str | None = None

    # ── Redis ────────────────────────────────────────────────────
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_url: str | None = None

    # ── Schedule ─────────────────────────────────────────────────
    check_interval_minutes: int = 30
    schedule_timezone: str = "America/Denver"
    scale_factor: float = 1.0  # divisor applied to every return-period threshold
    demo_mode: bool = False
    alert_worker_enabled: bool = False  # run the interval loop inside the API process

    # ── Batch execution ──────────────────────────────────────────
    batch_concurrency: int = 8
    batch_deadline_seconds: float = 240.0
    http_timeout_seconds: float = 15.0
    http_max_retries: int = 0

    # ── Return-period cache ──────────────────────────────────────
    return_period_freshness_days: int = 7
    return_period_retention_days: int = 30
    return_period_unit: str = "cms"

    # ── Repeat-alert cool-down (0 disables) ──────────────────────
    alert_cooldown_minutes: int = 0

    # ── Forecast provider ────────────────────────────────────────
    forecast_base_url: str = "https://api.water.noaa.gov/nwps/v1"
    return_period_base_url: str = "https://nwm-api-updt-9f6idmxh.uc.gateway.dev"
    return_period_api_key: SecretStr = SecretStr("")

    # ── Delivery gateways ────────────────────────────────────────
    push_gateway_url: str = ""
    push_gateway_token: SecretStr = SecretStr("")
    sms_gateway_url: str = ""
    sms_gateway_token: SecretStr = SecretStr("")
    email_gateway_url: str = ""
    email_gateway_token: SecretStr = SecretStr("")
    deep_link_scheme: str = "app"

    # ── Operator API ─────────────────────────────────────────────
    admin_api_token: SecretStr = SecretStr("")

    @property
    def return_period_freshness(self) -> timedelta:
        return timedelta(days=self.return_period_freshness_days)

    @property
    def return_period_retention(self) -> timedelta:
        return timedelta(days=self.return_period_retention_days)

    @property
    def alert_cooldown(self) -> timedelta:
        return timedelta(minutes=self.alert_cooldown_minutes)

    @property
    def timezone(self) -> ZoneInfo:
        """Zone in which the schedule and quiet hours are evaluated."""
        return ZoneInfo(self.schedule_timezone)

    @field_validator("scale_factor")
    @classmethod
    def validate_scale_factor(cls, v: float) -> float:
        """Reject divisors that would zero out or flip thresholds."""
        if v <= 0:
            raise ValueError("scale_factor must be greater than zero")
        return v

    @field_validator("check_interval_minutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if not 1 <= v <= 1440:
            raise ValueError("check_interval_minutes must be between 1 and 1440")
        return v

    @field_validator("batch_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch_concurrency must be at least 1")
        return v

    @field_validator("schedule_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {v}") from exc
        return v

    @field_validator("return_period_unit")
    @classmethod
    def validate_return_period_unit(cls, v: str) -> str:
        unit = v.strip().lower()
        if unit not in ("cfs", "cms"):
            raise ValueError("return_period_unit must be 'cfs' or 'cms'")
        return unit

    @model_validator(mode="after")
    def build_derived_urls(self) -> Settings:
        """Build database_url and redis_url from components if not set."""
        if not self.database_url:
            self.database_url = (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        if not self.redis_url:
            self.redis_url = f"redis://{self.redis_host}:{self.redis_port}/0"
        return self

    @model_validator(mode="after")
    def check_timeouts(self) -> Settings:
        """Per-call timeouts must fit inside the batch deadline."""
        if self.http_timeout_seconds >= self.batch_deadline_seconds:
            raise ValueError("http_timeout_seconds must be shorter than batch_deadline_seconds")
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
