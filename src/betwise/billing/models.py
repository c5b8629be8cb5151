"""Billing models for subscriptions, payments and webhook bookkeeping."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from betwise.storage.models import Base, Money


class SubscriptionPlan(str, Enum):
    """Subscription plans sold through Stripe Checkout."""
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    VIP = "VIP"


# Monthly price per plan, in platform currency
PLAN_PRICES = {
    SubscriptionPlan.BASIC: Decimal("9.99"),
    SubscriptionPlan.PREMIUM: Decimal("19.99"),
    SubscriptionPlan.VIP: Decimal("39.99"),
}


class SubscriptionStatus(str, Enum):
    """Subscription status types."""
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    PAST_DUE = "PAST_DUE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Ledger row status."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class PaymentMethod(str, Enum):
    """How the money moved."""
    STRIPE = "stripe"
    STRIPE_PAYOUT = "stripe_payout"


class Subscription(Base):
    """A user's subscription (one per user)."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)

    plan = Column(SQLEnum(SubscriptionPlan), nullable=False, default=SubscriptionPlan.BASIC)
    status = Column(SQLEnum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.PENDING)

    # Stripe subscription id (sub_...)
    stripe_id = Column(String(255), nullable=True, index=True)

    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationship
    user = relationship("UserAccount", back_populates="subscription")

    def __repr__(self):
        return f"<Subscription(user_id={self.user_id}, plan={self.plan}, status={self.status})>"


class Payment(Base):
    """Append-only money ledger.

    Positive amount = subscription charge, negative amount = payout.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    method = Column(SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.STRIPE)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    # Stripe reference: invoice / payment intent / checkout session / payout id
    stripe_id = Column(String(255), nullable=True, index=True)

    # Billing period covered by a subscription charge
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationship
    user = relationship("UserAccount", back_populates="payments")

    def __repr__(self):
        return f"<Payment(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook events for idempotency.

    Prevents duplicate processing of redelivered Stripe events.
    """
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)  # e.g., "invoice.payment_succeeded"
    source = Column(String(50), nullable=False)  # e.g., "stripe"
    processed_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"


# Pydantic models for API

class CheckoutRequest(BaseModel):
    """Request to start a subscription checkout."""
    plan: SubscriptionPlan


class CheckoutResponse(BaseModel):
    """Stripe Checkout session reference."""
    session_id: str
    url: str


class SubscriptionResponse(BaseModel):
    """Subscription response."""
    id: int
    user_id: int
    plan: SubscriptionPlan
    status: SubscriptionStatus
    stripe_id: str | None
    start_date: datetime | None
    end_date: datetime | None

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    """Ledger row response."""
    id: int
    amount: float
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    stripe_id: str | None
    period_start: datetime | None
    period_end: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True
