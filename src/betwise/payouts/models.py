"""Payout request models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from betwise.storage.models import Base, Money


class PayoutStatus(str, Enum):
    """Payout request lifecycle.

    REQUESTED -> PROCESSING -> PAID | FAILED, REQUESTED -> REJECTED,
    FAILED -> PROCESSING on re-approval.
    """
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"  # legacy, still approvable
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    REJECTED = "REJECTED"


APPROVABLE_STATUSES = (PayoutStatus.REQUESTED, PayoutStatus.APPROVED, PayoutStatus.FAILED)
REJECTABLE_STATUSES = (PayoutStatus.REQUESTED,)

# Amounts that still count against the referrer's available balance
RESERVED_STATUSES = (PayoutStatus.APPROVED, PayoutStatus.PROCESSING, PayoutStatus.FAILED)

# At most one of these per referrer
OPEN_STATUSES = (PayoutStatus.REQUESTED,) + RESERVED_STATUSES


class PayoutRequest(Base):
    """A referrer's request to withdraw accumulated commission."""
    __tablename__ = "payout_requests"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(SQLEnum(PayoutStatus), nullable=False, default=PayoutStatus.REQUESTED, index=True)

    reason = Column(Text, nullable=True)  # referrer's note
    admin_note = Column(Text, nullable=True)  # rejection note or failure message

    # Stripe references, set during approval
    stripe_transfer_id = Column(String(255), nullable=True)
    stripe_payout_id = Column(String(255), nullable=True, index=True)

    processed_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationship
    user = relationship("UserAccount", back_populates="payout_requests")

    def __repr__(self):
        return f"<PayoutRequest(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"


# Pydantic models for API

class PayoutRequestCreate(BaseModel):
    """Request to withdraw commission. Omit amount to withdraw everything available."""
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    reason: str | None = Field(default=None, max_length=500)


class PayoutReject(BaseModel):
    """Admin rejection payload."""
    note: str | None = Field(default=None, max_length=500)


class PayoutRequestResponse(BaseModel):
    """Payout request response."""
    id: int
    user_id: int
    amount: float
    currency: str
    status: PayoutStatus
    reason: str | None = None
    admin_note: str | None = None
    stripe_transfer_id: str | None = None
    stripe_payout_id: str | None = None
    processed_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class PayoutBalance(BaseModel):
    """Referrer balance breakdown."""
    earned: float
    pending: float
    locked: float
    available: float


class PayoutAccountStatus(BaseModel):
    """Stripe Connect flags plus balance."""
    stripe_account_id: str | None
    stripe_payouts_enabled: bool
    stripe_charges_enabled: bool
    stripe_requirements_due: list[str] | None = None
    balance: PayoutBalance
