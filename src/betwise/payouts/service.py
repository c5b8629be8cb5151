"""Payout workflow: Connect onboarding, withdrawal requests and admin review."""

from datetime import datetime
from decimal import Decimal
from typing import Any

import stripe
from sqlalchemy import func
from sqlalchemy.orm import Session

from betwise.auth.models import UserAccount
from betwise.billing.models import Payment, PaymentMethod, PaymentStatus
from betwise.logging_config import get_logger
from betwise.payments import stripe_service
from betwise.payouts.models import (
    APPROVABLE_STATUSES,
    OPEN_STATUSES,
    REJECTABLE_STATUSES,
    RESERVED_STATUSES,
    PayoutRequest,
    PayoutStatus,
)
from betwise.referral.service import referral_service
from betwise.settings import settings
from betwise.storage.db import db
from betwise.storage.models import to_money

logger = get_logger(__name__)


class PayoutError(Exception):
    """Base error for payout operations."""


class PayoutNotFoundError(PayoutError):
    """Payout request (or its owner) does not exist."""


class PayoutStateError(PayoutError):
    """Payout request is not in a state that allows the operation."""


class PayoutValidationError(PayoutError):
    """Payout request is not allowed for this user or amount."""


class PayoutProcessingError(PayoutError):
    """Stripe transfer or payout failed during approval."""


class PayoutService:
    """Service for referrer payouts."""

    def __init__(self):
        """Initialize payout service."""
        self.logger = get_logger(__name__)

    # ==================== BALANCE ====================

    def _sum_requests(self, session: Session, user_id: int, statuses) -> Decimal:
        total = session.query(func.coalesce(func.sum(PayoutRequest.amount), 0)).filter(
            PayoutRequest.user_id == user_id,
            PayoutRequest.status.in_(statuses),
        ).scalar()
        return to_money(total)

    def compute_balance(self, session: Session, user_id: int) -> dict[str, Decimal]:
        """Break a referrer's commission balance down.

        Args:
            session: Open session
            user_id: Referrer

        Returns:
            Dict with earned, pending, locked and available amounts
        """
        earned = referral_service.get_earned_total(session, user_id)
        pending = self._sum_requests(session, user_id, [PayoutStatus.REQUESTED])
        locked = self._sum_requests(session, user_id, list(RESERVED_STATUSES))
        available = max(Decimal("0.00"), earned - pending - locked)
        return {
            "earned": earned,
            "pending": pending,
            "locked": locked,
            "available": to_money(available),
        }

    def get_balance(self, user_id: int) -> dict[str, Decimal]:
        with db.session() as session:
            return self.compute_balance(session, user_id)

    # ==================== CONNECT ACCOUNT ====================

    def ensure_connected_account(self, user_id: int) -> tuple[str, bool]:
        """Create a Stripe Express account for the user unless one exists.

        Returns:
            (account id, created)
        """
        with db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                raise PayoutNotFoundError("User not found")

            if user.stripe_account_id:
                return user.stripe_account_id, False

            account = stripe_service.create_connected_account(
                email=user.email,
                country=user.country or settings.default_country,
                first_name=user.first_name,
                last_name=user.last_name,
            )
            user.stripe_account_id = account.id
            for field, value in stripe_service.account_flags(account).items():
                setattr(user, field, value)

            self.logger.info("connected_account_linked", user_id=user.id, account_id=account.id)
            return account.id, True

    def create_onboarding_link(self, user_id: int) -> str:
        """Onboarding URL for the user's connected account (created on demand)."""
        account_id, _ = self.ensure_connected_account(user_id)
        return stripe_service.create_account_link(
            account_id,
            refresh_url=f"{settings.frontend_url}/dashboard/payouts?refresh=true",
            return_url=f"{settings.frontend_url}/dashboard/payouts?success=true",
        )

    def refresh_account_status(self, user_id: int) -> dict[str, Any]:
        """Pull the connected account's flags from Stripe and return them with the balance.

        A Stripe outage falls back to the last stored flags.
        """
        with db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                raise PayoutNotFoundError("User not found")

            if user.stripe_account_id:
                try:
                    account = stripe_service.retrieve_account(user.stripe_account_id)
                except stripe.StripeError as e:
                    self.logger.warning(
                        "connected_account_refresh_failed",
                        user_id=user.id,
                        error=str(e),
                    )
                else:
                    for field, value in stripe_service.account_flags(account).items():
                        setattr(user, field, value)

            balance = self.compute_balance(session, user.id)

            return {
                "stripe_account_id": user.stripe_account_id,
                "stripe_payouts_enabled": bool(user.stripe_payouts_enabled),
                "stripe_charges_enabled": bool(user.stripe_charges_enabled),
                "stripe_requirements_due": user.stripe_requirements_due,
                "balance": {k: float(v) for k, v in balance.items()},
            }

    # ==================== REQUESTS ====================

    def request_payout(
        self,
        user_id: int,
        amount: Decimal | None = None,
        reason: str | None = None,
    ) -> PayoutRequest:
        """Create a REQUESTED payout for a referrer.

        Args:
            user_id: Referrer
            amount: Amount to withdraw; full available balance when None
            reason: Optional note from the referrer

        Returns:
            Created payout request

        Raises:
            PayoutValidationError: Account not ready, below minimum, or amount out of range
            PayoutStateError: Referrer already has an open request
        """
        with db.session() as session:
            user = session.get(UserAccount, user_id)
            if not user:
                raise PayoutNotFoundError("User not found")

            if not user.stripe_account_id or not user.stripe_payouts_enabled:
                raise PayoutValidationError("Connect a Stripe account with payouts enabled first")

            open_request = session.query(PayoutRequest).filter(
                PayoutRequest.user_id == user.id,
                PayoutRequest.status.in_(OPEN_STATUSES),
            ).first()
            if open_request:
                raise PayoutStateError(
                    f"Payout request #{open_request.id} is still {open_request.status.value}"
                )

            balance = self.compute_balance(session, user.id)
            if balance["earned"] < settings.min_payout_amount:
                raise PayoutValidationError(
                    f"Minimum payout amount is {to_money(settings.min_payout_amount)}"
                )

            requested = to_money(amount) if amount is not None else balance["available"]
            if requested <= 0:
                raise PayoutValidationError("No available balance to withdraw")
            if requested > balance["available"]:
                raise PayoutValidationError("Requested amount exceeds available balance")

            request = PayoutRequest(
                user_id=user.id,
                amount=requested,
                currency=settings.platform_currency,
                status=PayoutStatus.REQUESTED,
                reason=reason,
            )
            session.add(request)
            session.flush()

            self.logger.info(
                "payout_requested",
                payout_request_id=request.id,
                user_id=user.id,
                amount=str(requested),
                available=str(balance["available"]),
            )
            return request

    def list_user_requests(self, user_id: int) -> list[PayoutRequest]:
        with db.session() as session:
            return (
                session.query(PayoutRequest)
                .filter(PayoutRequest.user_id == user_id)
                .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
                .all()
            )

    def list_requests(self, show_all: bool = False) -> list[dict[str, Any]]:
        """Requests awaiting review (REQUESTED and FAILED), or every request."""
        with db.session() as session:
            query = session.query(PayoutRequest, UserAccount).join(
                UserAccount, UserAccount.id == PayoutRequest.user_id
            )
            if not show_all:
                query = query.filter(
                    PayoutRequest.status.in_([PayoutStatus.REQUESTED, PayoutStatus.FAILED])
                )

            rows = query.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc()).all()
            return [
                {
                    "id": request.id,
                    "user_id": user.id,
                    "email": user.email,
                    "amount": float(to_money(request.amount)),
                    "currency": request.currency,
                    "status": request.status.value,
                    "reason": request.reason,
                    "admin_note": request.admin_note,
                    "stripe_account_id": user.stripe_account_id,
                    "stripe_payouts_enabled": bool(user.stripe_payouts_enabled),
                    "created_at": request.created_at,
                    "processed_at": request.processed_at,
                }
                for request, user in rows
            ]

    # ==================== ADMIN REVIEW ====================

    def approve(self, request_id: int) -> PayoutRequest:
        """Pay a request out: transfer to the connected account, then payout to the bank.

        Args:
            request_id: Payout request ID

        Returns:
            The PAID request

        Raises:
            PayoutNotFoundError: Unknown request
            PayoutStateError: Request is not approvable
            PayoutValidationError: Connected account cannot receive payouts
            PayoutProcessingError: Stripe failed; the request is now FAILED
        """
        with db.session() as session:
            request = session.get(PayoutRequest, request_id)
            if not request:
                raise PayoutNotFoundError("Payout request not found")
            if request.status not in APPROVABLE_STATUSES:
                raise PayoutStateError(f"Cannot approve a {request.status.value} payout request")

            user = session.get(UserAccount, request.user_id)
            if not user or not user.stripe_account_id:
                raise PayoutValidationError("User has no connected Stripe account")

            try:
                account = stripe_service.retrieve_account(user.stripe_account_id)
            except stripe.StripeError as e:
                raise PayoutProcessingError(f"Could not verify Stripe account: {e}") from e

            for field, value in stripe_service.account_flags(account).items():
                setattr(user, field, value)
            if not user.stripe_payouts_enabled:
                session.commit()
                raise PayoutValidationError("Payouts are not enabled for this Stripe account")

            request.status = PayoutStatus.PROCESSING
            amount = to_money(request.amount)
            currency = request.currency
            account_id = user.stripe_account_id
            transfer_id = request.stripe_transfer_id
            user_id = user.id

        self.logger.info("payout_processing", payout_request_id=request_id, user_id=user_id, amount=str(amount))

        metadata = {"payoutRequestId": str(request_id), "userId": str(user_id)}
        try:
            if not transfer_id:
                transfer = stripe_service.create_transfer(amount, currency, account_id, metadata)
                transfer_id = transfer.id
                with db.session() as session:
                    session.query(PayoutRequest).filter(PayoutRequest.id == request_id).update(
                        {PayoutRequest.stripe_transfer_id: transfer_id},
                        synchronize_session=False,
                    )
            else:
                self.logger.info("payout_transfer_reused", payout_request_id=request_id, transfer_id=transfer_id)

            payout = stripe_service.create_payout(amount, currency, account_id, metadata)
        except Exception as e:
            message = str(e)[:500]
            with db.session() as session:
                failed = session.get(PayoutRequest, request_id)
                failed.status = PayoutStatus.FAILED
                failed.admin_note = message
            self.logger.error("payout_failed", payout_request_id=request_id, user_id=user_id, error=message)
            raise PayoutProcessingError(message) from e

        with db.session() as session:
            request = session.get(PayoutRequest, request_id)
            request.status = PayoutStatus.PAID
            request.stripe_transfer_id = transfer_id
            request.stripe_payout_id = payout.id
            request.processed_at = datetime.utcnow()
            request.admin_note = None

            session.add(
                Payment(
                    user_id=user_id,
                    amount=-amount,
                    currency=currency,
                    method=PaymentMethod.STRIPE_PAYOUT,
                    status=PaymentStatus.COMPLETED,
                    stripe_id=payout.id,
                    created_at=datetime.utcnow(),
                )
            )
            reset = referral_service.reset_earnings(session, user_id)

        self.logger.info(
            "payout_paid",
            payout_request_id=request_id,
            user_id=user_id,
            amount=str(amount),
            transfer_id=transfer_id,
            payout_id=payout.id,
            referrals_reset=reset,
        )
        return request

    def reject(self, request_id: int, note: str | None = None) -> PayoutRequest:
        """Reject a pending request. The balance is left untouched.

        Raises:
            PayoutNotFoundError: Unknown request
            PayoutStateError: Request is not rejectable
        """
        with db.session() as session:
            request = session.get(PayoutRequest, request_id)
            if not request:
                raise PayoutNotFoundError("Payout request not found")
            if request.status not in REJECTABLE_STATUSES:
                raise PayoutStateError(f"Cannot reject a {request.status.value} payout request")

            request.status = PayoutStatus.REJECTED
            request.admin_note = note
            request.processed_at = datetime.utcnow()

            self.logger.info("payout_rejected", payout_request_id=request.id, user_id=request.user_id)
            return request


# Singleton instance
payout_service = PayoutService()
