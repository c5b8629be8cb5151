"""
Pytest configuration and shared fixtures.

The environment is set before any betwise module is imported so the global
settings and database point at a throwaway SQLite file and a test webhook
secret. Stripe wrapper functions are replaced by an in-memory fake.
"""

import hashlib
import hmac
import json
import os
import tempfile
import time
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Callable

_TMP_DIR = tempfile.mkdtemp(prefix="betwise-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-jwt-tokens-0123456789"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["FRONTEND_URL"] = "http://frontend.test"

import pytest  # noqa: E402

from betwise.auth.local import LocalAuthService  # noqa: E402
from betwise.auth.models import UserAccount, UserRole  # noqa: E402
from betwise.billing.service import billing_event_service  # noqa: E402
from betwise.payments import stripe_service  # noqa: E402
from betwise.referral.service import generate_referral_code, referral_service  # noqa: E402
from betwise.storage.db import db  # noqa: E402

WEBHOOK_SECRET = "whsec_test"


# ==================== PYTEST CONFIGURATION ====================


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: marks HTTP-level tests")


# ==================== DATABASE ====================


@pytest.fixture(autouse=True)
def clean_database():
    """Fresh schema for every test."""
    db.drop_tables()
    db.create_tables()
    yield


# ==================== FACTORIES ====================


@pytest.fixture
def make_user() -> Callable[..., UserAccount]:
    """Create a user directly in the database (no password hashing)."""

    def _make(
        email: str,
        referrer: UserAccount | None = None,
        role: UserRole = UserRole.USER,
        stripe_account_id: str | None = None,
        payouts_enabled: bool = False,
    ) -> UserAccount:
        with db.session() as session:
            user = UserAccount(
                email=email,
                password_hash="not-a-real-hash",
                role=role,
                referral_code=generate_referral_code(),
                stripe_account_id=stripe_account_id,
                stripe_payouts_enabled=payouts_enabled,
            )
            session.add(user)
            session.flush()

            if referrer is not None:
                owner = session.get(UserAccount, referrer.id)
                referral_service.link_users(session, owner, user)

            return user

    return _make


@pytest.fixture
def referrer(make_user) -> UserAccount:
    """Referrer with a payout-enabled Connect account."""
    return make_user("referrer@example.com", stripe_account_id="acct_referrer", payouts_enabled=True)


@pytest.fixture
def referred(make_user, referrer) -> UserAccount:
    return make_user("referred@example.com", referrer=referrer)


@pytest.fixture
def admin(make_user) -> UserAccount:
    return make_user("admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
def pay() -> Callable[..., Any]:
    """Record a completed subscription charge for a user."""

    def _pay(user: UserAccount, amount: str, stripe_id: str | None = None, period_start=None):
        with db.session() as session:
            return billing_event_service.record_payment(
                session,
                user_id=user.id,
                amount=Decimal(amount),
                currency="usd",
                stripe_id=stripe_id,
                period_start=period_start,
            )

    return _pay


# ==================== STRIPE ====================


class FakeStripe:
    """In-memory stand-in for the Stripe wrapper functions."""

    def __init__(self):
        self.transfers: list[dict[str, Any]] = []
        self.payouts: list[dict[str, Any]] = []
        self.accounts: list[dict[str, Any]] = []
        self.cancelled: list[str] = []
        self.payouts_enabled = True
        self.fail_transfer: Exception | None = None
        self.fail_payout: Exception | None = None

    def retrieve_account(self, account_id):
        return SimpleNamespace(
            id=account_id,
            details_submitted=True,
            payouts_enabled=self.payouts_enabled,
            charges_enabled=True,
            requirements=SimpleNamespace(currently_due=[]),
        )

    def create_connected_account(self, email, country, first_name=None, last_name=None):
        account_id = f"acct_{len(self.accounts) + 1}"
        self.accounts.append({"id": account_id, "email": email, "country": country})
        return SimpleNamespace(
            id=account_id,
            details_submitted=False,
            payouts_enabled=False,
            charges_enabled=False,
            requirements=SimpleNamespace(currently_due=["external_account"]),
        )

    def create_account_link(self, account_id, refresh_url, return_url):
        return f"https://connect.stripe.test/setup/{account_id}"

    def create_transfer(self, amount, currency, destination, metadata):
        if self.fail_transfer:
            raise self.fail_transfer
        transfer_id = f"tr_{len(self.transfers) + 1}"
        self.transfers.append({"id": transfer_id, "amount": amount, "destination": destination})
        return SimpleNamespace(id=transfer_id)

    def create_payout(self, amount, currency, stripe_account, metadata):
        if self.fail_payout:
            raise self.fail_payout
        payout_id = f"po_{len(self.payouts) + 1}"
        self.payouts.append({"id": payout_id, "amount": amount, "stripe_account": stripe_account})
        return SimpleNamespace(id=payout_id)

    def create_subscription_checkout(self, user_id, user_email, plan, unit_amount, success_url, cancel_url):
        return SimpleNamespace(id=f"cs_test_{user_id}", url=f"https://checkout.stripe.test/cs_test_{user_id}")

    def cancel_subscription_at_period_end(self, stripe_subscription_id):
        self.cancelled.append(stripe_subscription_id)


@pytest.fixture
def fake_stripe(monkeypatch) -> FakeStripe:
    """Patch the Stripe wrapper module with a FakeStripe."""
    fake = FakeStripe()
    for name in (
        "retrieve_account",
        "create_connected_account",
        "create_account_link",
        "create_transfer",
        "create_payout",
        "create_subscription_checkout",
        "cancel_subscription_at_period_end",
    ):
        monkeypatch.setattr(stripe_service, name, getattr(fake, name))
    return fake


# ==================== WEBHOOK PAYLOADS ====================


def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_payload() -> Callable[..., str]:
    """Stripe-Signature header builder."""
    return _sign


@pytest.fixture
def stripe_event() -> Callable[..., dict[str, Any]]:
    """Build a Stripe event envelope."""
    counter = {"n": 0}

    def _event(event_type: str, obj: dict[str, Any], event_id: str | None = None) -> dict[str, Any]:
        counter["n"] += 1
        return {
            "id": event_id or f"evt_test_{counter['n']}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }

    return _event


@pytest.fixture
def checkout_session() -> Callable[..., dict[str, Any]]:
    def _checkout(user: UserAccount, amount_cents: int = 2000, plan: str = "PREMIUM", invoice: str = "in_first"):
        return {
            "id": f"cs_test_{user.id}",
            "object": "checkout.session",
            "amount_total": amount_cents,
            "currency": "usd",
            "invoice": invoice,
            "subscription": f"sub_{user.id}",
            "metadata": {"userId": str(user.id), "plan": plan},
        }

    return _checkout


@pytest.fixture
def paid_invoice() -> Callable[..., dict[str, Any]]:
    def _invoice(user: UserAccount, invoice_id: str, amount_cents: int = 2000, start: int = 1767225600, end: int = 1769904000):
        return {
            "id": invoice_id,
            "object": "invoice",
            "amount_paid": amount_cents,
            "currency": "usd",
            "subscription": f"sub_{user.id}",
            "lines": {"data": [{"period": {"start": start, "end": end}}]},
        }

    return _invoice


# ==================== HTTP ====================


@pytest.fixture
def client():
    """FastAPI test client with the app lifespan running."""
    from fastapi.testclient import TestClient

    from betwise.api.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[UserAccount], dict[str, str]]:
    service = LocalAuthService()

    def _headers(user: UserAccount) -> dict[str, str]:
        return {"Authorization": f"Bearer {service.create_access_token(user)}"}

    return _headers


@pytest.fixture
def post_webhook(client) -> Callable[..., Any]:
    """POST a correctly signed event to the webhook endpoint."""

    def _post(event: dict[str, Any], secret: str = WEBHOOK_SECRET):
        payload = json.dumps(event)
        return client.post(
            "/api/stripe/webhook",
            content=payload,
            headers={"Stripe-Signature": _sign(payload, secret), "Content-Type": "application/json"},
        )

    return _post
