"""
Unit tests for the Stripe wrapper helpers that do not call the network.
"""

import json
from decimal import Decimal

import pytest

from betwise.payments import stripe_service
from betwise.settings import settings


def test_to_cents_rounds_half_up():
    assert stripe_service.to_cents(Decimal("9.99")) == 999
    assert stripe_service.to_cents(Decimal("14.005")) == 1401
    assert stripe_service.to_cents(Decimal("0")) == 0


def test_from_cents():
    assert stripe_service.from_cents(1999) == Decimal("19.99")
    assert stripe_service.from_cents(None) == Decimal("0.00")


def test_verify_webhook_signature_accepts_signed_payload(sign_payload):
    """Test a payload signed with the endpoint secret parses to a dict."""
    payload = json.dumps({"id": "evt_1", "type": "payout.paid", "data": {"object": {"id": "po_1"}}})

    event = stripe_service.verify_webhook_signature(payload.encode("utf-8"), sign_payload(payload))

    assert event["id"] == "evt_1"
    assert event["data"]["object"]["id"] == "po_1"


def test_verify_webhook_signature_rejects_wrong_secret(sign_payload):
    payload = json.dumps({"id": "evt_1"})

    with pytest.raises(ValueError, match="Invalid webhook signature"):
        stripe_service.verify_webhook_signature(payload.encode("utf-8"), sign_payload(payload, "whsec_other"))


def test_verify_webhook_signature_rejects_tampered_body(sign_payload):
    payload = json.dumps({"id": "evt_1", "amount": 100})
    header = sign_payload(payload)
    tampered = payload.replace("100", "999")

    with pytest.raises(ValueError):
        stripe_service.verify_webhook_signature(tampered.encode("utf-8"), header)


def test_verify_webhook_signature_requires_secret(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", None)

    with pytest.raises(ValueError, match="not configured"):
        stripe_service.verify_webhook_signature(b"{}", "t=1,v1=abc")


def test_account_flags_from_account_object():
    class Account:
        details_submitted = True
        payouts_enabled = True
        charges_enabled = False

        class requirements:
            currently_due = ["individual.verification.document"]

    flags = stripe_service.account_flags(Account())

    assert flags == {
        "stripe_onboarding_complete": True,
        "stripe_payouts_enabled": True,
        "stripe_charges_enabled": False,
        "stripe_requirements_due": ["individual.verification.document"],
    }
