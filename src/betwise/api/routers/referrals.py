"""Referral endpoints."""

from fastapi import APIRouter, Depends, Query

from betwise.auth.middleware import require_auth
from betwise.auth.models import UserAccount
from betwise.logging_config import get_logger
from betwise.referral.service import referral_service

logger = get_logger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.get("/my")
async def my_referrals(user: UserAccount = Depends(require_auth)):
    """Users referred by the current user."""
    return {"referrals": referral_service.get_referrals(user.id)}


@router.get("/stats")
async def referral_stats(user: UserAccount = Depends(require_auth)):
    """Referral counts, uncollected earnings and the referral link."""
    return referral_service.get_referral_stats(user)


@router.get("/summary")
async def referral_summary(user: UserAccount = Depends(require_auth)):
    return referral_service.get_summary(user)


@router.get("/logs")
async def commission_logs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: UserAccount = Depends(require_auth),
):
    """Paginated commission logs.

    Regular users see commissions credited to them; admins see every log.
    """
    return referral_service.get_commission_logs(user, page=page, limit=limit)
