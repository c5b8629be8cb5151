"""Referral system database models."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from betwise.storage.models import Base, Money


class Referral(Base):
    """Referral relationship between two users.

    One row per (referrer, referred user) pair. ``earned_amount`` is the
    commission accumulated since the referrer's last completed payout.
    """
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_user_id", name="uq_referrals_referrer_referred"),
    )

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Uncollected commission (reset to 0 when a payout is paid)
    earned_amount = Column(Money, default=Decimal("0.00"), nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    referrer = relationship("UserAccount", foreign_keys=[referrer_id])
    referred = relationship("UserAccount", foreign_keys=[referred_user_id])

    def __repr__(self):
        return f"<Referral(referrer={self.referrer_id}, referred={self.referred_user_id}, earned={self.earned_amount})>"


class CommissionLog(Base):
    """Append-only audit row for every commission credited.

    Never updated or deleted; survives the balance reset on payout.
    """
    __tablename__ = "commission_logs"

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, unique=True)

    amount = Column(Money, nullable=False)
    rate_applied = Column(Numeric(4, 2), nullable=False)  # 0.50 first payment, 0.20 renewals
    month = Column(String(7), nullable=False, index=True)  # YYYY-MM

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    referrer = relationship("UserAccount", foreign_keys=[referrer_id])
    referred = relationship("UserAccount", foreign_keys=[referred_user_id])
    payment = relationship("Payment")

    def __repr__(self):
        return f"<CommissionLog(id={self.id}, referrer={self.referrer_id}, amount={self.amount}, rate={self.rate_applied})>"
