"""Referral service for referral codes, referred users and commission reporting."""

import secrets
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from betwise.auth.models import UserAccount
from betwise.billing.models import Subscription, SubscriptionStatus
from betwise.logging_config import get_logger
from betwise.referral.models import CommissionLog, Referral
from betwise.settings import settings
from betwise.storage.db import db
from betwise.storage.models import to_money

logger = get_logger(__name__)


def generate_referral_code(length: int = 8) -> str:
    """Generate a readable referral code.

    Uses uppercase letters and digits, avoiding confusing characters.
    Format: ABC12XYZ (8 chars by default)
    """
    # Exclude confusing characters: 0, O, I, l, 1
    alphabet = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def referral_link(code: str) -> str:
    return f"{settings.frontend_url}/register?ref={code}"


class ReferralService:
    """Service for the referral registry and commission reporting."""

    def __init__(self):
        """Initialize referral service."""
        self.logger = get_logger(__name__)

    # ==================== REGISTRY ====================

    def unique_code(self, session: Session) -> str:
        """Generate a referral code not used by any user yet."""
        code = generate_referral_code()
        attempts = 0
        while attempts < 10:
            taken = session.query(UserAccount).filter(
                UserAccount.referral_code == code
            ).first()
            if not taken:
                break
            code = generate_referral_code()
            attempts += 1
        return code

    def find_referrer(self, session: Session, code: str | None) -> UserAccount | None:
        """Resolve a referral code to its owner.

        Args:
            session: Open session
            code: Referral code as typed by the user

        Returns:
            Referrer or None
        """
        if not code:
            return None
        return session.query(UserAccount).filter(
            UserAccount.referral_code == code.upper().strip(),
            UserAccount.is_active == True,
        ).first()

    def link_users(self, session: Session, referrer: UserAccount, referred: UserAccount) -> Referral:
        """Record that ``referrer`` brought ``referred`` onto the platform."""
        referred.referred_by_id = referrer.id
        referral = Referral(
            referrer_id=referrer.id,
            referred_user_id=referred.id,
            earned_amount=Decimal("0.00"),
        )
        session.add(referral)
        session.flush()

        self.logger.info(
            "referral_linked",
            referrer_id=referrer.id,
            referred_user_id=referred.id,
        )
        return referral

    def validate_code(self, code: str) -> bool:
        """Check whether a referral code belongs to an active user."""
        with db.session() as session:
            return self.find_referrer(session, code) is not None

    # ==================== BALANCE ====================

    def get_earned_total(self, session: Session, referrer_id: int) -> Decimal:
        """Sum of uncollected commission across all the referrer's referrals."""
        total = session.query(func.coalesce(func.sum(Referral.earned_amount), 0)).filter(
            Referral.referrer_id == referrer_id
        ).scalar()
        return to_money(total)

    def reset_earnings(self, session: Session, referrer_id: int) -> int:
        """Zero every Referral balance of a referrer after a paid payout.

        Returns:
            Number of referral rows reset
        """
        return session.query(Referral).filter(
            Referral.referrer_id == referrer_id
        ).update(
            {Referral.earned_amount: Decimal("0.00")},
            synchronize_session=False,
        )

    # ==================== REPORTING ====================

    def get_referrals(self, user_id: int) -> list[dict[str, Any]]:
        """List users referred by ``user_id`` with their subscription state."""
        with db.session() as session:
            rows = (
                session.query(Referral, UserAccount, Subscription)
                .join(UserAccount, UserAccount.id == Referral.referred_user_id)
                .outerjoin(Subscription, Subscription.user_id == UserAccount.id)
                .filter(Referral.referrer_id == user_id)
                .order_by(Referral.created_at.desc())
                .all()
            )

            return [
                {
                    "id": referral.id,
                    "referred_user_id": referred.id,
                    "email": referred.email,
                    "joined_at": referred.created_at,
                    "earned_amount": float(to_money(referral.earned_amount)),
                    "subscription_plan": subscription.plan.value if subscription else None,
                    "subscription_status": subscription.status.value if subscription else None,
                }
                for referral, referred, subscription in rows
            ]

    def get_referral_stats(self, user: UserAccount) -> dict[str, Any]:
        """Get referral statistics for a user.

        Args:
            user: Referrer

        Returns:
            Dict with referral stats
        """
        with db.session() as session:
            total_referrals = session.query(Referral).filter(
                Referral.referrer_id == user.id
            ).count()

            active_referrals = (
                session.query(Referral)
                .join(Subscription, Subscription.user_id == Referral.referred_user_id)
                .filter(
                    Referral.referrer_id == user.id,
                    Subscription.status == SubscriptionStatus.ACTIVE,
                )
                .count()
            )

            total_earnings = self.get_earned_total(session, user.id)

        return {
            "total_referrals": total_referrals,
            "active_referrals": active_referrals,
            "total_earnings": float(total_earnings),
            "referral_code": user.referral_code,
            "referral_link": referral_link(user.referral_code),
        }

    def get_summary(self, user: UserAccount) -> dict[str, Any]:
        """Lifetime commission summary with the five latest commissions."""
        with db.session() as session:
            referred_users_count = session.query(Referral).filter(
                Referral.referrer_id == user.id
            ).count()

            total_earned = session.query(func.coalesce(func.sum(CommissionLog.amount), 0)).filter(
                CommissionLog.referrer_id == user.id
            ).scalar()

            last_commissions = (
                session.query(CommissionLog)
                .filter(CommissionLog.referrer_id == user.id)
                .order_by(CommissionLog.created_at.desc(), CommissionLog.id.desc())
                .limit(5)
                .all()
            )

            return {
                "referred_users_count": referred_users_count,
                "total_earned": float(to_money(total_earned)),
                "last_commissions": [_commission_dict(c) for c in last_commissions],
                "referral_link": referral_link(user.referral_code),
            }

    def get_commission_logs(
        self,
        user: UserAccount,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """Paginated commission logs. Admins see every referrer's logs.

        Args:
            user: Requesting user
            page: 1-based page number
            limit: Page size

        Returns:
            Dict with logs and pagination info
        """
        with db.session() as session:
            query = session.query(CommissionLog)
            if not user.is_admin:
                query = query.filter(CommissionLog.referrer_id == user.id)

            total = query.count()
            logs = (
                query.order_by(CommissionLog.created_at.desc(), CommissionLog.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

            return {
                "logs": [_commission_dict(c, with_users=True) for c in logs],
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "pages": (total + limit - 1) // limit,
                },
            }


def _commission_dict(log: CommissionLog, with_users: bool = False) -> dict[str, Any]:
    data = {
        "id": log.id,
        "amount": float(to_money(log.amount)),
        "rate_applied": float(log.rate_applied),
        "month": log.month,
        "payment_id": log.payment_id,
        "created_at": log.created_at,
    }
    if with_users:
        data["referrer"] = {"id": log.referrer.id, "email": log.referrer.email}
        data["referred"] = {"id": log.referred.id, "email": log.referred.email}
    return data


# Singleton instance
referral_service = ReferralService()
