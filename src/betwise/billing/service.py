"""Billing services: Stripe event intake and subscription management."""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from betwise.auth.models import UserAccount
from betwise.billing.models import (
    PLAN_PRICES,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from betwise.logging_config import get_logger
from betwise.payments import stripe_service
from betwise.payouts.models import PayoutRequest, PayoutStatus
from betwise.referral.commission import credit_commission
from betwise.settings import settings
from betwise.storage.db import db
from betwise.storage.models import to_money

logger = get_logger(__name__)


# Stripe subscription status -> local status
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PENDING,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.PAUSED,
}


class SubscriptionError(Exception):
    """Base error for subscription operations."""


class SubscriptionConflictError(SubscriptionError):
    """User already has an active subscription."""


class SubscriptionNotFoundError(SubscriptionError):
    """User has no active subscription."""


def from_timestamp(value: int | None) -> datetime | None:
    """Convert a Stripe unix timestamp to a naive UTC datetime."""
    if not value:
        return None
    return datetime.utcfromtimestamp(int(value))


def _metadata_user_id(*sources: dict[str, Any] | None) -> int | None:
    """First ``userId`` found in the given metadata dicts."""
    for metadata in sources:
        if metadata and metadata.get("userId"):
            try:
                return int(metadata["userId"])
            except (TypeError, ValueError):
                logger.warning("metadata_user_id_invalid", value=metadata["userId"])
                return None
    return None


def _invoice_period(invoice: dict[str, Any]) -> tuple[datetime | None, datetime | None]:
    """Billing period of the first invoice line."""
    lines = (invoice.get("lines") or {}).get("data") or []
    if not lines:
        return from_timestamp(invoice.get("period_start")), from_timestamp(invoice.get("period_end"))
    period = lines[0].get("period") or {}
    return from_timestamp(period.get("start")), from_timestamp(period.get("end"))


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    if invoice.get("subscription"):
        return invoice["subscription"]
    # Newer API versions nest it under parent.subscription_details
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


class BillingEventService:
    """Applies Stripe webhook events to subscriptions, payments and payouts.

    Every recognised event kind maps to one handler. Handlers are safe to run
    twice for the same event: payments are keyed by their Stripe id, and the
    commission calculator refuses to credit a payment twice.
    """

    def __init__(self):
        """Initialize billing event service."""
        self.logger = get_logger(__name__)
        self.handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            "checkout.session.completed": self.handle_checkout_completed,
            "invoice.payment_succeeded": self.handle_invoice_payment_succeeded,
            "customer.subscription.updated": self.handle_subscription_updated,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "payout.paid": self.handle_payout_paid,
            "payout.failed": self.handle_payout_failed,
        }

    def handle_event(self, event: dict[str, Any]) -> bool:
        """Dispatch a verified Stripe event to its handler.

        Args:
            event: Event payload as a plain dict

        Returns:
            True if the event kind is handled, False if it was ignored
        """
        event_type = event.get("type", "")
        handler = self.handlers.get(event_type)
        if handler is None:
            self.logger.info("stripe_webhook_unhandled", event_type=event_type)
            return False

        data = (event.get("data") or {}).get("object") or {}
        handler(data)
        return True

    # ==================== PAYMENTS ====================

    def record_payment(
        self,
        session: Session,
        user_id: int,
        amount: Decimal,
        currency: str | None,
        stripe_id: str | None,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> Payment | None:
        """Record a completed subscription charge and credit the referrer.

        Args:
            session: Open session; the commission shares its transaction
            user_id: Payer
            amount: Charged amount
            currency: ISO currency code
            stripe_id: Invoice, payment intent or checkout session id
            period_start: Billing period start
            period_end: Billing period end

        Returns:
            The new Payment, or None when nothing was recorded
        """
        if amount <= 0:
            self.logger.info("payment_zero_amount_ignored", user_id=user_id, stripe_id=stripe_id)
            return None

        if stripe_id:
            existing = session.query(Payment).filter(Payment.stripe_id == stripe_id).first()
            if existing:
                self.logger.info("payment_duplicate_ignored", stripe_id=stripe_id, payment_id=existing.id)
                return None

        payment = Payment(
            user_id=user_id,
            amount=amount,
            currency=(currency or settings.platform_currency).lower(),
            method=PaymentMethod.STRIPE,
            status=PaymentStatus.COMPLETED,
            stripe_id=stripe_id,
            period_start=period_start,
            period_end=period_end,
            created_at=datetime.utcnow(),
        )
        session.add(payment)
        session.flush()

        self.logger.info(
            "payment_recorded",
            payment_id=payment.id,
            user_id=user_id,
            amount=str(amount),
            stripe_id=stripe_id,
        )

        credit_commission(session, payment)
        return payment

    # ==================== HANDLERS ====================

    def handle_checkout_completed(self, data: dict[str, Any]) -> None:
        """Activate the subscription bought through Checkout and record the charge."""
        metadata = data.get("metadata") or {}
        user_id = _metadata_user_id(metadata)
        if not user_id:
            self.logger.warning("checkout_missing_user_id", session_id=data.get("id"))
            return

        try:
            plan = SubscriptionPlan(metadata.get("plan") or SubscriptionPlan.BASIC.value)
        except ValueError:
            self.logger.warning("checkout_unknown_plan", plan=metadata.get("plan"), session_id=data.get("id"))
            plan = SubscriptionPlan.BASIC

        with db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                self.logger.warning("checkout_user_not_found", user_id=user_id, session_id=data.get("id"))
                return

            now = datetime.utcnow()
            end = now + timedelta(days=settings.subscription_period_days)

            subscription = session.query(Subscription).filter(
                Subscription.user_id == user.id
            ).first()
            if not subscription:
                subscription = Subscription(user_id=user.id)
                session.add(subscription)

            subscription.plan = plan
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.stripe_id = data.get("subscription") or subscription.stripe_id
            subscription.start_date = now
            subscription.end_date = end

            payment_ref = data.get("invoice") or data.get("payment_intent") or data.get("id")
            self.record_payment(
                session,
                user_id=user.id,
                amount=stripe_service.from_cents(data.get("amount_total")),
                currency=data.get("currency"),
                stripe_id=payment_ref,
                period_start=now,
                period_end=end,
            )

            self.logger.info(
                "subscription_activated",
                user_id=user.id,
                plan=plan.value,
                stripe_subscription_id=subscription.stripe_id,
            )

    def handle_invoice_payment_succeeded(self, invoice: dict[str, Any]) -> None:
        """Renew the subscription for a paid invoice and record the charge."""
        amount = stripe_service.from_cents(invoice.get("amount_paid"))
        if amount <= 0:
            self.logger.info("invoice_zero_amount_ignored", invoice_id=invoice.get("id"))
            return

        stripe_subscription_id = _invoice_subscription_id(invoice)
        period_start, period_end = _invoice_period(invoice)

        with db.session() as session:
            subscription = None
            if stripe_subscription_id:
                subscription = session.query(Subscription).filter(
                    Subscription.stripe_id == stripe_subscription_id
                ).first()

            if not subscription:
                user_id = _metadata_user_id(
                    invoice.get("metadata"),
                    (invoice.get("subscription_details") or {}).get("metadata"),
                    ((invoice.get("parent") or {}).get("subscription_details") or {}).get("metadata"),
                )
                if user_id:
                    subscription = session.query(Subscription).filter(
                        Subscription.user_id == user_id
                    ).first()

            if not subscription:
                self.logger.warning(
                    "invoice_subscription_not_found",
                    invoice_id=invoice.get("id"),
                    stripe_subscription_id=stripe_subscription_id,
                )
                return

            subscription.status = SubscriptionStatus.ACTIVE
            if stripe_subscription_id and not subscription.stripe_id:
                subscription.stripe_id = stripe_subscription_id
            if period_end:
                subscription.end_date = period_end

            self.record_payment(
                session,
                user_id=subscription.user_id,
                amount=amount,
                currency=invoice.get("currency"),
                stripe_id=invoice.get("id"),
                period_start=period_start,
                period_end=period_end,
            )

            self.logger.info(
                "subscription_renewed",
                user_id=subscription.user_id,
                invoice_id=invoice.get("id"),
                end_date=str(subscription.end_date),
            )

    def _find_subscription(self, session: Session, data: dict[str, Any]) -> Subscription | None:
        subscription = session.query(Subscription).filter(
            Subscription.stripe_id == data.get("id")
        ).first()
        if subscription:
            return subscription

        user_id = _metadata_user_id(data.get("metadata"))
        if user_id:
            return session.query(Subscription).filter(Subscription.user_id == user_id).first()
        return None

    def handle_subscription_updated(self, data: dict[str, Any]) -> None:
        """Mirror Stripe's subscription status and period end."""
        with db.session() as session:
            subscription = self._find_subscription(session, data)
            if not subscription:
                self.logger.warning("subscription_update_unmatched", stripe_subscription_id=data.get("id"))
                return

            stripe_status = data.get("status")
            status = STRIPE_STATUS_MAP.get(stripe_status)
            if status:
                subscription.status = status
            else:
                self.logger.warning("subscription_status_unknown", stripe_status=stripe_status)

            period_end = data.get("current_period_end")
            if not period_end:
                items = (data.get("items") or {}).get("data") or []
                period_end = items[0].get("current_period_end") if items else None
            if period_end:
                subscription.end_date = from_timestamp(period_end)

            if not subscription.stripe_id:
                subscription.stripe_id = data.get("id")

            self.logger.info(
                "subscription_updated",
                user_id=subscription.user_id,
                stripe_status=stripe_status,
                status=subscription.status.value,
            )

    def handle_subscription_deleted(self, data: dict[str, Any]) -> None:
        """Mark the subscription cancelled."""
        with db.session() as session:
            subscription = self._find_subscription(session, data)
            if not subscription:
                self.logger.warning("subscription_delete_unmatched", stripe_subscription_id=data.get("id"))
                return

            subscription.status = SubscriptionStatus.CANCELLED
            self.logger.info("subscription_cancelled", user_id=subscription.user_id)

    def handle_payout_paid(self, data: dict[str, Any]) -> None:
        with db.session() as session:
            request = session.query(PayoutRequest).filter(
                PayoutRequest.stripe_payout_id == data.get("id")
            ).first()
            if not request:
                self.logger.info("payout_event_unmatched", payout_id=data.get("id"), event_type="payout.paid")
                return

            self.logger.info(
                "stripe_payout_arrived",
                payout_request_id=request.id,
                payout_id=data.get("id"),
                user_id=request.user_id,
            )

    def handle_payout_failed(self, data: dict[str, Any]) -> None:
        """Note a bank-side payout failure on the request it belongs to."""
        with db.session() as session:
            request = session.query(PayoutRequest).filter(
                PayoutRequest.stripe_payout_id == data.get("id")
            ).first()
            if not request:
                self.logger.info("payout_event_unmatched", payout_id=data.get("id"), event_type="payout.failed")
                return

            message = data.get("failure_message") or data.get("failure_code") or "Payout failed"
            request.admin_note = f"Stripe payout failed: {message}"[:500]

            self.logger.warning(
                "stripe_payout_failed",
                payout_request_id=request.id,
                payout_id=data.get("id"),
                user_id=request.user_id,
                failure=message,
            )


class SubscriptionService:
    """User-facing subscription operations."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def create_checkout(self, user: UserAccount, plan: SubscriptionPlan) -> dict[str, str]:
        """Start a Stripe Checkout session for a monthly plan.

        Args:
            user: Buyer
            plan: Plan to subscribe to

        Returns:
            Dict with session_id and url

        Raises:
            SubscriptionConflictError: If the user already has an active subscription
            ValueError: If Stripe is not configured
        """
        with db.session() as session:
            existing = session.query(Subscription).filter(
                Subscription.user_id == user.id
            ).first()
            if existing and existing.status == SubscriptionStatus.ACTIVE:
                raise SubscriptionConflictError("User already has active subscription")

        checkout = stripe_service.create_subscription_checkout(
            user_id=user.id,
            user_email=user.email,
            plan=plan.value,
            unit_amount=PLAN_PRICES[plan],
            success_url=f"{settings.frontend_url}/dashboard?success=true",
            cancel_url=f"{settings.frontend_url}/pricing?cancelled=true",
        )
        return {"session_id": checkout.id, "url": checkout.url}

    def cancel(self, user: UserAccount) -> Subscription:
        """Cancel at period end on Stripe and mark the subscription cancelled.

        Raises:
            SubscriptionNotFoundError: If there is no active subscription
        """
        with db.session() as session:
            subscription = session.query(Subscription).filter(
                Subscription.user_id == user.id
            ).first()
            if not subscription or subscription.status != SubscriptionStatus.ACTIVE:
                raise SubscriptionNotFoundError("No active subscription found")

            if subscription.stripe_id:
                stripe_service.cancel_subscription_at_period_end(subscription.stripe_id)

            subscription.status = SubscriptionStatus.CANCELLED
            session.commit()

            self.logger.info("subscription_cancel_requested", user_id=user.id)
            return subscription

    def get_status(self, user: UserAccount) -> Subscription | None:
        with db.session() as session:
            return session.query(Subscription).filter(
                Subscription.user_id == user.id
            ).first()

    def list_all(self) -> list[dict[str, Any]]:
        """All subscriptions with the owner's email, newest first."""
        with db.session() as session:
            rows = (
                session.query(Subscription, UserAccount.email)
                .join(UserAccount, UserAccount.id == Subscription.user_id)
                .order_by(Subscription.start_date.desc(), Subscription.id.desc())
                .all()
            )
            return [
                {
                    "id": sub.id,
                    "user_id": sub.user_id,
                    "email": email,
                    "plan": sub.plan.value,
                    "status": sub.status.value,
                    "stripe_id": sub.stripe_id,
                    "start_date": sub.start_date,
                    "end_date": sub.end_date,
                }
                for sub, email in rows
            ]

    def get_payment_history(self, user_id: int) -> list[Payment]:
        with db.session() as session:
            return (
                session.query(Payment)
                .filter(Payment.user_id == user_id)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .all()
            )

    def get_admin_stats(self) -> dict[str, Any]:
        """Platform totals for the admin dashboard."""
        with db.session() as session:
            total_users = session.query(UserAccount).count()
            active_subscriptions = session.query(Subscription).filter(
                Subscription.status == SubscriptionStatus.ACTIVE
            ).count()
            total_payments = session.query(Payment).filter(
                Payment.status == PaymentStatus.COMPLETED
            ).count()
            total_revenue = session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
                Payment.status == PaymentStatus.COMPLETED,
                Payment.amount > 0,
            ).scalar()
            open_payout_requests = session.query(PayoutRequest).filter(
                PayoutRequest.status.in_([PayoutStatus.REQUESTED, PayoutStatus.FAILED])
            ).count()

        return {
            "total_users": total_users,
            "active_subscriptions": active_subscriptions,
            "total_payments": total_payments,
            "total_revenue": float(to_money(total_revenue)),
            "open_payout_requests": open_payout_requests,
        }


# Singleton instances
billing_event_service = BillingEventService()
subscription_service = SubscriptionService()
