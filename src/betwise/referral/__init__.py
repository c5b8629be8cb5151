"""Referral system module for Betwise.

Commission rules:
- Referrer earns 50% of a referred user's first completed payment
- Referrer earns 20% of every renewal after that
"""

from betwise.referral.models import CommissionLog, Referral
from betwise.referral.service import ReferralService, referral_service

__all__ = ["CommissionLog", "Referral", "ReferralService", "referral_service"]
