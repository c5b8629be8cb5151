"""
Unit tests for BillingEventService.

Events are plain dicts shaped like Stripe's webhook payloads and are handed
straight to the service (signature checks are covered by the endpoint tests).
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from betwise.billing.models import Payment, Subscription, SubscriptionPlan, SubscriptionStatus
from betwise.billing.service import STRIPE_STATUS_MAP, BillingEventService
from betwise.payouts.models import PayoutRequest, PayoutStatus
from betwise.referral.models import CommissionLog, Referral
from betwise.storage.db import db


@pytest.fixture
def service() -> BillingEventService:
    return BillingEventService()


def _subscription(user_id: int) -> Subscription:
    with db.session() as session:
        return session.query(Subscription).filter(Subscription.user_id == user_id).one()


def _payments() -> list[Payment]:
    with db.session() as session:
        return session.query(Payment).order_by(Payment.id).all()


def _earned(referrer_id: int) -> Decimal:
    with db.session() as session:
        return Decimal(session.query(Referral).filter(Referral.referrer_id == referrer_id).one().earned_amount)


# ==================== CHECKOUT ====================


def test_checkout_activates_subscription_and_credits_referrer(
    service, stripe_event, checkout_session, referrer, referred
):
    """
    GIVEN a referred user completing checkout for 20.00
    WHEN checkout.session.completed is handled
    THEN the subscription is ACTIVE for 30 days, a payment is recorded
         under the invoice id and the referrer earns 10.00
    """
    handled = service.handle_event(stripe_event("checkout.session.completed", checkout_session(referred)))

    assert handled is True
    subscription = _subscription(referred.id)
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.plan == SubscriptionPlan.PREMIUM
    assert subscription.stripe_id == f"sub_{referred.id}"
    assert subscription.end_date - subscription.start_date == timedelta(days=30)

    payments = _payments()
    assert len(payments) == 1
    assert Decimal(payments[0].amount) == Decimal("20.00")
    assert payments[0].stripe_id == "in_first"

    assert _earned(referrer.id) == Decimal("10.00")


def test_checkout_without_user_id_is_ignored(service, stripe_event):
    session_data = {"id": "cs_anon", "amount_total": 999, "metadata": {}}

    assert service.handle_event(stripe_event("checkout.session.completed", session_data)) is True
    assert _payments() == []


def test_checkout_unknown_plan_falls_back_to_basic(service, stripe_event, checkout_session, make_user):
    user = make_user("plan@example.com")

    service.handle_event(stripe_event("checkout.session.completed", checkout_session(user, plan="GOLD")))

    assert _subscription(user.id).plan == SubscriptionPlan.BASIC


# ==================== INVOICES ====================


def test_first_invoice_after_checkout_is_not_double_counted(
    service, stripe_event, checkout_session, paid_invoice, referrer, referred
):
    """Test the subscription's first invoice dedupes against the checkout payment."""
    service.handle_event(stripe_event("checkout.session.completed", checkout_session(referred)))
    service.handle_event(stripe_event("invoice.payment_succeeded", paid_invoice(referred, "in_first")))

    assert len(_payments()) == 1
    assert _earned(referrer.id) == Decimal("10.00")


def test_renewal_invoice_credits_renewal_rate(
    service, stripe_event, checkout_session, paid_invoice, referrer, referred
):
    """
    GIVEN a checkout for 20.00 already credited 10.00
    WHEN a renewal invoice of 20.00 is paid
    THEN the referrer earns 4.00 more and the subscription end moves to the line period end
    """
    service.handle_event(stripe_event("checkout.session.completed", checkout_session(referred)))
    service.handle_event(stripe_event("invoice.payment_succeeded", paid_invoice(referred, "in_renewal")))

    assert _earned(referrer.id) == Decimal("14.00")
    assert _subscription(referred.id).end_date == datetime(2026, 2, 1)

    payments = _payments()
    assert len(payments) == 2
    assert payments[1].period_start == datetime(2026, 1, 1)

    with db.session() as session:
        renewal_log = session.query(CommissionLog).order_by(CommissionLog.id.desc()).first()
        assert renewal_log.month == "2026-01"
        assert Decimal(renewal_log.rate_applied) == Decimal("0.20")


def test_redelivered_invoice_credits_once(
    service, stripe_event, checkout_session, paid_invoice, referrer, referred
):
    service.handle_event(stripe_event("checkout.session.completed", checkout_session(referred)))
    invoice = paid_invoice(referred, "in_renewal")
    service.handle_event(stripe_event("invoice.payment_succeeded", invoice))
    service.handle_event(stripe_event("invoice.payment_succeeded", invoice))

    assert len(_payments()) == 2
    assert _earned(referrer.id) == Decimal("14.00")


def test_zero_amount_invoice_ignored(service, stripe_event, checkout_session, paid_invoice, referred):
    service.handle_event(stripe_event("checkout.session.completed", checkout_session(referred)))
    service.handle_event(
        stripe_event("invoice.payment_succeeded", paid_invoice(referred, "in_zero", amount_cents=0))
    )

    assert len(_payments()) == 1


def test_invoice_for_unknown_subscription_ignored(service, stripe_event, paid_invoice, referred):
    service.handle_event(stripe_event("invoice.payment_succeeded", paid_invoice(referred, "in_orphan")))

    assert _payments() == []


# ==================== SUBSCRIPTION LIFECYCLE ====================


@pytest.mark.parametrize(
    "stripe_status,expected",
    [
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("unpaid", SubscriptionStatus.PAST_DUE),
        ("incomplete", SubscriptionStatus.PENDING),
        ("paused", SubscriptionStatus.PAUSED),
        ("canceled", SubscriptionStatus.CANCELLED),
    ],
)
def test_subscription_updated_maps_status(
    service, stripe_event, checkout_session, referred, stripe_status, expected
):
    service.handle_event(stripe_event("checkout.session.completed", checkout_session(referred)))
    service.handle_event(
        stripe_event(
            "customer.subscription.updated",
            {"id": f"sub_{referred.id}", "status": stripe_status, "current_period_end": 1769904000},
        )
    )

    subscription = _subscription(referred.id)
    assert subscription.status == expected
    assert subscription.end_date == datetime(2026, 2, 1)


def test_status_map_covers_trialing_and_expired():
    assert STRIPE_STATUS_MAP["trialing"] == SubscriptionStatus.ACTIVE
    assert STRIPE_STATUS_MAP["incomplete_expired"] == SubscriptionStatus.CANCELLED


def test_subscription_deleted_cancels(service, stripe_event, checkout_session, referred):
    service.handle_event(stripe_event("checkout.session.completed", checkout_session(referred)))
    service.handle_event(stripe_event("customer.subscription.deleted", {"id": f"sub_{referred.id}"}))

    assert _subscription(referred.id).status == SubscriptionStatus.CANCELLED


# ==================== CONNECT PAYOUTS ====================


def test_payout_failed_notes_request_without_status_change(service, stripe_event, referrer):
    with db.session() as session:
        request = PayoutRequest(
            user_id=referrer.id,
            amount=Decimal("14.00"),
            status=PayoutStatus.PAID,
            stripe_payout_id="po_bank",
        )
        session.add(request)
        session.flush()
        request_id = request.id

    service.handle_event(
        stripe_event("payout.failed", {"id": "po_bank", "failure_message": "The bank account has been closed."})
    )

    with db.session() as session:
        request = session.get(PayoutRequest, request_id)
        assert request.status == PayoutStatus.PAID
        assert "bank account has been closed" in request.admin_note


def test_unhandled_event_type_is_ignored(service, stripe_event):
    assert service.handle_event(stripe_event("charge.refunded", {"id": "ch_1"})) is False
