"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("HUBX_ENV", os.getenv("APP_ENV", "dev")).lower()

# Stale PENDING payment sweeper (optional)
SCHEDULER_ENABLED = os.getenv("HUBX_SCHEDULER_ENABLED", "0") in {
    "1",
    "true",
    "yes",
    "True",
    "YES",
}

# Razorpay rejects receipts longer than this.
RECEIPT_MAX_LENGTH = 40


class Settings(BaseSettings):
    """Environment configuration for the HubX payments backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///hubx.db"
    SECRET_KEY: str = "change-me"
    LOG_LEVEL: str = "INFO"

    # --- Payment gateway -------------------------------------------------
    RAZORPAY_KEY_ID: str | None = None
    # Signs ``order_id|payment_id`` on the client checkout callback.
    RAZORPAY_KEY_SECRET: str | None = None
    # Signs webhook bodies; must differ from the key secret.
    RAZORPAY_WEBHOOK_SECRET: str | None = Field(
        default=None,
        validation_alias=AliasChoices("RAZORPAY_WEBHOOK_SECRET", "PAYMENT_WEBHOOK_SECRET"),
    )
    PAYMENT_CURRENCY: str = "INR"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    PENDING_PAYMENT_TTL_MINUTES: int = 60

    # --- Coupons ---------------------------------------------------------
    COUPON_VALID_DAYS: int | None = None
    COUPON_CODE_ATTEMPTS: int = 5

    # --- Outbound email --------------------------------------------------
    MAIL_API_URL: str = "https://api.brevo.com/v3/smtp/email"
    MAIL_API_KEY: str | None = None
    MAIL_FROM: str = "noreply@hubx.com"
    PLATFORM_NAME: str = "HubX Platform"
    MAIL_TIMEOUT_SECONDS: float = 10.0

    # --- HTTP / ops ------------------------------------------------------
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    SCHEDULER_ENABLED: bool = SCHEDULER_ENABLED
    ALLOW_DB_CREATE_ALL: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET", "MAIL_API_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("PAYMENT_CURRENCY")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()


class AppInfo(BaseModel):
    name: str = "hubx-payments"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "SCHEDULER_ENABLED",
    "RECEIPT_MAX_LENGTH",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
