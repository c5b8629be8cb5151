"""Referral commission calculator.

Runs once per completed subscription payment: the referrer of the payer gets
50% of the payer's first payment and 20% of every renewal, accumulated on the
Referral row and logged in CommissionLog.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from betwise.auth.models import UserAccount
from betwise.billing.models import Payment, PaymentStatus
from betwise.logging_config import get_logger
from betwise.referral.models import CommissionLog, Referral
from betwise.settings import settings
from betwise.storage.models import CENT

logger = get_logger(__name__)


def commission_rate(is_first_payment: bool) -> Decimal:
    """Rate applied to a referred user's payment."""
    if is_first_payment:
        return settings.first_payment_commission_rate
    return settings.renewal_commission_rate


def month_bucket(period_start: datetime | None, fallback: datetime | None = None) -> str:
    """Format the month a commission belongs to as YYYY-MM."""
    moment = period_start or fallback or datetime.utcnow()
    return moment.strftime("%Y-%m")


def is_first_payment(session: Session, payment: Payment) -> bool:
    """True when the payer has no other completed charge."""
    prior = session.query(Payment).filter(
        Payment.user_id == payment.user_id,
        Payment.status == PaymentStatus.COMPLETED,
        Payment.amount > 0,
        Payment.id != payment.id,
    ).count()
    return prior == 0


def credit_commission(session: Session, payment: Payment) -> CommissionLog | None:
    """Credit the payer's referrer for a completed payment.

    Must be called inside the transaction that recorded the payment, after
    it has been flushed (so it has an id).

    Args:
        session: Open database session
        payment: Completed, positive payment

    Returns:
        The CommissionLog row, or None when no commission applies
    """
    if payment.status != PaymentStatus.COMPLETED or payment.amount <= 0:
        return None

    payer = session.get(UserAccount, payment.user_id)
    if not payer or not payer.referred_by_id:
        return None

    referral = session.query(Referral).filter(
        Referral.referrer_id == payer.referred_by_id,
        Referral.referred_user_id == payer.id,
    ).first()
    if not referral:
        logger.warning(
            "referral_row_missing",
            referrer_id=payer.referred_by_id,
            referred_user_id=payer.id,
        )
        return None

    already = session.query(CommissionLog).filter(
        CommissionLog.payment_id == payment.id,
    ).first()
    if already:
        logger.info("commission_already_credited", payment_id=payment.id)
        return None

    first = is_first_payment(session, payment)
    rate = commission_rate(first)
    amount = (Decimal(payment.amount) * rate).quantize(CENT, rounding=ROUND_HALF_UP)

    session.query(Referral).filter(Referral.id == referral.id).update(
        {
            Referral.earned_amount: Referral.earned_amount + amount,
            Referral.updated_at: datetime.utcnow(),
        },
        synchronize_session=False,
    )

    log = CommissionLog(
        referrer_id=referral.referrer_id,
        referred_user_id=payer.id,
        payment_id=payment.id,
        amount=amount,
        rate_applied=rate,
        month=month_bucket(payment.period_start, payment.created_at),
    )
    session.add(log)
    session.flush()

    logger.info(
        "commission_credited",
        referrer_id=referral.referrer_id,
        referred_user_id=payer.id,
        payment_id=payment.id,
        amount=str(amount),
        rate=str(rate),
        first_payment=first,
    )

    return log
