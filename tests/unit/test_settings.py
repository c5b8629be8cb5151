"""
Unit tests for application settings.
"""

from decimal import Decimal

from betwise.settings import Settings, settings


def test_defaults_for_commission_and_payouts():
    """Test money-related defaults."""
    fresh = Settings(_env_file=None)

    assert fresh.first_payment_commission_rate == Decimal("0.50")
    assert fresh.renewal_commission_rate == Decimal("0.20")
    assert fresh.min_payout_amount == Decimal("10.00")
    assert fresh.subscription_period_days == 30
    assert fresh.platform_currency == "usd"


def test_environment_overrides(monkeypatch):
    """Test env vars are read case-insensitively and coerced."""
    monkeypatch.setenv("MIN_PAYOUT_AMOUNT", "25.50")
    monkeypatch.setenv("renewal_commission_rate", "0.25")

    fresh = Settings(_env_file=None)

    assert fresh.min_payout_amount == Decimal("25.50")
    assert fresh.renewal_commission_rate == Decimal("0.25")


def test_test_environment_loaded():
    """Test the suite runs against the throwaway configuration."""
    assert settings.env == "test"
    assert settings.database_url.startswith("sqlite:///")
    assert settings.stripe_webhook_secret == "whsec_test"
