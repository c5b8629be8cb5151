"""Authentication models for user accounts."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from betwise.storage.models import Base


class UserRole(str, Enum):
    """User role types."""
    USER = "USER"
    ADMIN = "ADMIN"


class UserAccount(Base):
    """User account for the Betwise platform.

    Carries the referral link (who brought this user in) and the Stripe
    Connect account used to pay out referral commissions.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    country = Column(String(2), nullable=True)  # ISO 3166-1 alpha-2
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)

    # Referral
    referral_code = Column(String(20), unique=True, nullable=False, index=True)
    referred_by_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Stripe Connect (payouts)
    stripe_account_id = Column(String(255), nullable=True)
    stripe_onboarding_complete = Column(Boolean, default=False)
    stripe_payouts_enabled = Column(Boolean, default=False)
    stripe_charges_enabled = Column(Boolean, default=False)
    stripe_requirements_due = Column(JSON, nullable=True)  # account.requirements.currently_due

    # Status
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    # Relationships
    referrer = relationship("UserAccount", remote_side=[id])
    subscription = relationship("Subscription", back_populates="user", uselist=False)
    payments = relationship("Payment", back_populates="user")
    payout_requests = relationship("PayoutRequest", back_populates="user")

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# Pydantic models for API
from pydantic import BaseModel, EmailStr, Field


class User(BaseModel):
    """User data for API responses."""
    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    country: str | None = None
    role: UserRole
    referral_code: str
    referred_by_id: int | None = None
    stripe_account_id: str | None = None
    stripe_onboarding_complete: bool = False
    stripe_payouts_enabled: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    """User registration request."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, min_length=2, max_length=2)
    referral_code: str | None = Field(default=None, max_length=20)


class UserLogin(BaseModel):
    """User login request."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: User
