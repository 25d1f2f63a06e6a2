"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("BILLFLOW_ENV", "dev").lower()

# Scheduler (optional): retries failed notification/activity/deed side effects
SCHEDULER_ENABLED = os.getenv("BILLFLOW_SCHEDULER_ENABLED", "0") in {
    "1",
    "true",
    "yes",
    "True",
    "YES",
}


class Settings(BaseSettings):
    """Environment configuration for the bill lifecycle backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///billflow.db"
    SECRET_KEY: str = "change-me"
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ALLOW_DB_CREATE_ALL: bool = False
    LOG_LEVEL: str = "INFO"
    DB_LOCK_TIMEOUT_SECONDS: float = 15.0

    # --- Bill lifecycle --------------------------------------------------
    ALLOWED_PAYMENT_QUARTERS: list[int] = [2, 4, 6, 8]
    DEFAULT_CURRENCY: str = "NGN"

    # --- Side-effect outbox ----------------------------------------------
    SCHEDULER_ENABLED: bool = SCHEDULER_ENABLED
    SIDE_EFFECT_MAX_ATTEMPTS: int = 5
    SIDE_EFFECT_RETRY_SECONDS: int = 60

    # --- Blockchain deed service -----------------------------------------
    BLOCKCHAIN_ENABLED: bool = False
    BLOCKCHAIN_DEED_URL: str | None = None
    BLOCKCHAIN_API_KEY: str | None = None
    BLOCKCHAIN_TIMEOUT_SECONDS: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("ALLOWED_PAYMENT_QUARTERS")
    @classmethod
    def _positive_quarters(cls, value: list[int]) -> list[int]:
        """Reject non-positive quarter counts in the allowed set."""

        if not value or any(q <= 0 for q in value):
            raise ValueError("ALLOWED_PAYMENT_QUARTERS must hold positive integers")
        return sorted(set(value))

    @field_validator("BLOCKCHAIN_DEED_URL", "BLOCKCHAIN_API_KEY")
    @classmethod
    def _strip_empty(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "billflow-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "SCHEDULER_ENABLED",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
