"""Referral commission payouts."""

from betwise.payouts.models import PayoutRequest, PayoutStatus

__all__ = ["PayoutRequest", "PayoutStatus"]
