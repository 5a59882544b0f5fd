"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("BILLING_ENV", "dev").lower()

# Environments where a missing webhook secret is tolerated.
INSECURE_WEBHOOK_ENVS = {"dev", "local", "test"}

# Gateway identifier used for the single, platform-wide credential set.
DEFAULT_GATEWAY = "mercadopago"


class Settings(BaseSettings):
    """Environment configuration for the billing backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///billing.db"
    LOG_LEVEL: str = "INFO"

    # --- API access ------------------------------------------------------
    API_KEY: str | None = None
    ADMIN_API_KEY: str | None = None
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://app.atlon.app",
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Payment gateway -------------------------------------------------
    GATEWAY_API_BASE_URL: str = "https://api.mercadopago.com"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    GATEWAY_WEBHOOK_SECRET: str | None = None
    GATEWAY_WEBHOOK_MAX_DRIFT_SECONDS: int = 300
    NOTIFICATION_URL: str = "http://localhost:8000/webhooks/payment"
    APP_URL: str = "https://app.atlon.app"
    DEFAULT_CURRENCY: str = "BRL"
    DEFAULT_PAYER_EMAIL: str = "aluno@atlon.app"
    CREDENTIAL_CACHE_TTL_SECONDS: int = 60

    # --- Scheduled jobs --------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_LOCK_TTL_SECONDS: int = 300
    WEBHOOK_RETRY_INTERVAL_MINUTES: int = 5
    WEBHOOK_RETRY_BATCH_SIZE: int = 10
    WEBHOOK_MAX_RETRIES: int = 5
    WEBHOOK_RETRY_MIN_AGE_SECONDS: int = 60
    EXPIRY_SWEEP_HOUR: int = 3
    REMINDER_SWEEP_HOUR: int = 9
    REMINDER_HORIZONS_DAYS: list[int] = [7, 3, 1]
    AUTO_RENEW_LEAD_DAYS: int = 3

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("GATEWAY_WEBHOOK_SECRET", "API_KEY", "ADMIN_API_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("REMINDER_HORIZONS_DAYS")
    @classmethod
    def _positive_horizons(cls, value: list[int]) -> list[int]:
        if any(days <= 0 for days in value):
            raise ValueError("Reminder horizons must be positive day counts.")
        return sorted(set(value), reverse=True)


class AppInfo(BaseModel):
    name: str = "trainer-billing"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "INSECURE_WEBHOOK_ENVS",
    "DEFAULT_GATEWAY",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
