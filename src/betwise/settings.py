"""Application settings and configuration."""

import sys
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "betwise"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console | json
    allowed_origins: str = "http://localhost:3000"
    frontend_url: str = "http://localhost:3000"

    # JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_expire_hours: int = 168  # 7 days

    # Database
    database_url: str = "sqlite:///./betwise.db"

    # Stripe
    stripe_secret_key: str | None = None
    stripe_publishable_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_api_version: str = "2024-06-20"

    # Money
    platform_currency: str = "usd"
    default_country: str = "BG"  # Fallback for Stripe Express accounts

    # Referral commissions
    first_payment_commission_rate: Decimal = Decimal("0.50")
    renewal_commission_rate: Decimal = Decimal("0.20")

    # Payouts
    min_payout_amount: Decimal = Decimal("10.00")

    # Subscriptions
    subscription_period_days: int = 30

    # Webhooks
    webhook_event_retention_days: int = 30


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
