"""
Unit tests for the referral commission calculator.

Covers first-payment vs renewal rates, rounding, idempotency per payment
and the no-referrer / missing-referral paths.
"""

from datetime import datetime
from decimal import Decimal

from betwise.billing.models import Payment, PaymentStatus
from betwise.referral.commission import commission_rate, credit_commission, month_bucket
from betwise.referral.models import CommissionLog, Referral
from betwise.storage.db import db


def _earned(referrer_id: int) -> Decimal:
    with db.session() as session:
        row = session.query(Referral).filter(Referral.referrer_id == referrer_id).one()
        return Decimal(row.earned_amount)


def _logs(referrer_id: int) -> list[CommissionLog]:
    with db.session() as session:
        return (
            session.query(CommissionLog)
            .filter(CommissionLog.referrer_id == referrer_id)
            .order_by(CommissionLog.id)
            .all()
        )


def test_commission_rates_configured():
    """Test default commission rates."""
    assert commission_rate(True) == Decimal("0.50")
    assert commission_rate(False) == Decimal("0.20")


def test_first_payment_credits_half(referrer, referred, pay):
    """
    GIVEN R referred U
    WHEN U completes a first payment of 20.00
    THEN R earns 10.00 at rate 0.50
    """
    pay(referred, "20.00", stripe_id="in_1")

    assert _earned(referrer.id) == Decimal("10.00")
    logs = _logs(referrer.id)
    assert len(logs) == 1
    assert Decimal(logs[0].rate_applied) == Decimal("0.50")
    assert Decimal(logs[0].amount) == Decimal("10.00")
    assert logs[0].referred_user_id == referred.id


def test_renewal_credits_twenty_percent(referrer, referred, pay):
    """
    GIVEN U already paid once
    WHEN U pays 20.00 again
    THEN R earns 4.00 more, 14.00 in total
    """
    pay(referred, "20.00", stripe_id="in_1")
    pay(referred, "20.00", stripe_id="in_2")

    assert _earned(referrer.id) == Decimal("14.00")
    logs = _logs(referrer.id)
    assert [Decimal(log.rate_applied) for log in logs] == [Decimal("0.50"), Decimal("0.20")]
    assert [Decimal(log.amount) for log in logs] == [Decimal("10.00"), Decimal("4.00")]


def test_commission_rounds_half_up(referrer, referred, pay):
    """Test 9.99 x 0.5 = 4.995 rounds to 5.00 and 9.99 x 0.2 = 1.998 to 2.00."""
    pay(referred, "9.99", stripe_id="in_1")
    pay(referred, "9.99", stripe_id="in_2")

    assert [Decimal(log.amount) for log in _logs(referrer.id)] == [Decimal("5.00"), Decimal("2.00")]
    assert _earned(referrer.id) == Decimal("7.00")


def test_unreferred_user_produces_no_commission(make_user, pay):
    """Test users without a referrer never produce commission logs."""
    solo = make_user("solo@example.com")
    payment = pay(solo, "39.99", stripe_id="in_solo")

    assert payment is not None
    with db.session() as session:
        assert session.query(CommissionLog).count() == 0


def test_commission_not_credited_twice_for_same_payment(referrer, referred, pay):
    """Test re-running the calculator for one payment is a no-op."""
    payment = pay(referred, "20.00", stripe_id="in_1")

    with db.session() as session:
        again = credit_commission(session, session.get(Payment, payment.id))

    assert again is None
    assert len(_logs(referrer.id)) == 1
    assert _earned(referrer.id) == Decimal("10.00")


def test_missing_referral_row_is_not_fatal(referrer, referred, pay):
    """Test a referred_by link without a Referral row credits nothing."""
    with db.session() as session:
        session.query(Referral).delete()

    payment = pay(referred, "20.00", stripe_id="in_1")

    assert payment is not None
    assert _logs(referrer.id) == []


def test_pending_payment_is_ignored(referrer, referred):
    """Test only completed payments are credited."""
    with db.session() as session:
        payment = Payment(user_id=referred.id, amount=Decimal("20.00"), status=PaymentStatus.PENDING)
        session.add(payment)
        session.flush()
        assert credit_commission(session, payment) is None


def test_month_bucket_uses_period_start(referrer, referred, pay):
    """Test the commission month comes from the billing period start."""
    pay(referred, "20.00", stripe_id="in_1", period_start=datetime(2026, 3, 31, 23, 0))

    assert _logs(referrer.id)[0].month == "2026-03"


def test_month_bucket_fallback():
    assert month_bucket(None, datetime(2025, 12, 5)) == "2025-12"
    assert month_bucket(datetime(2026, 1, 1), datetime(2025, 12, 5)) == "2026-01"
