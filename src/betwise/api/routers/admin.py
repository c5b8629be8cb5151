"""Admin dashboard endpoints."""

from fastapi import APIRouter, Depends

from betwise.auth.middleware import require_admin
from betwise.auth.models import UserAccount
from betwise.billing.service import subscription_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stats")
async def admin_stats(admin: UserAccount = Depends(require_admin)):
    """Users, active subscriptions, revenue and open payout requests."""
    return subscription_service.get_admin_stats()
