"""
Integration tests for POST /api/stripe/webhook.

Payloads are signed with the test endpoint secret exactly like Stripe signs
them, so signature verification runs for real.
"""

import json
from decimal import Decimal

import pytest

from betwise.api.routers.webhooks import cleanup_old_events, is_event_processed
from betwise.billing.models import Payment, ProcessedWebhookEvent
from betwise.billing.service import billing_event_service
from betwise.referral.models import Referral
from betwise.settings import settings
from betwise.storage.db import db

pytestmark = pytest.mark.integration


def _earned(referrer_id: int) -> Decimal:
    with db.session() as session:
        return Decimal(session.query(Referral).filter(Referral.referrer_id == referrer_id).one().earned_amount)


def test_signed_checkout_event_is_processed(post_webhook, stripe_event, checkout_session, referrer, referred):
    """
    GIVEN a correctly signed checkout.session.completed event
    WHEN Stripe posts it
    THEN the payment is recorded, the referrer credited and the event marked processed
    """
    event = stripe_event("checkout.session.completed", checkout_session(referred), event_id="evt_checkout")

    response = post_webhook(event)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert is_event_processed("evt_checkout")
    assert _earned(referrer.id) == Decimal("10.00")


def test_redelivered_event_is_acknowledged_once(post_webhook, stripe_event, checkout_session, referrer, referred):
    event = stripe_event("checkout.session.completed", checkout_session(referred), event_id="evt_dup")

    first = post_webhook(event)
    second = post_webhook(event)

    assert first.status_code == 200
    assert second.json() == {"received": True, "duplicate": True}
    with db.session() as session:
        assert session.query(Payment).count() == 1
    assert _earned(referrer.id) == Decimal("10.00")


def test_invalid_signature_rejected(client, post_webhook, stripe_event, checkout_session, referred):
    event = stripe_event("checkout.session.completed", checkout_session(referred))

    response = post_webhook(event, secret="whsec_attacker")

    assert response.status_code == 400
    with db.session() as session:
        assert session.query(Payment).count() == 0


def test_missing_signature_header_rejected(client):
    response = client.post("/api/stripe/webhook", content=json.dumps({"id": "evt_x"}))

    assert response.status_code == 400


def test_webhook_not_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", None)

    response = client.post("/api/stripe/webhook", content=b"{}")

    assert response.status_code == 503


def test_handler_error_returns_500_and_allows_retry(post_webhook, stripe_event, monkeypatch):
    """Test a failing handler is not marked processed so Stripe retries it."""

    def boom(event):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(billing_event_service, "handle_event", boom)
    event = stripe_event("invoice.payment_succeeded", {"id": "in_x"}, event_id="evt_fail")

    response = post_webhook(event)

    assert response.status_code == 500
    assert not is_event_processed("evt_fail")


def test_unhandled_event_type_acknowledged(post_webhook, stripe_event):
    response = post_webhook(stripe_event("customer.created", {"id": "cus_1"}, event_id="evt_other"))

    assert response.status_code == 200
    assert not is_event_processed("evt_other")


def test_cleanup_old_events(post_webhook, stripe_event, checkout_session, referred):
    post_webhook(stripe_event("checkout.session.completed", checkout_session(referred), event_id="evt_old"))

    assert cleanup_old_events(days=1) == 0
    assert cleanup_old_events(days=-1) == 1
    with db.session() as session:
        assert session.query(ProcessedWebhookEvent).count() == 0
