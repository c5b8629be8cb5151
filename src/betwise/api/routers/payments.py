"""Payment ledger endpoints."""

from fastapi import APIRouter, Depends, Request, status

from betwise.api.rate_limit import limiter
from betwise.api.routers.payouts import payout_http_error
from betwise.auth.middleware import require_auth
from betwise.auth.models import UserAccount
from betwise.billing.models import PaymentResponse
from betwise.billing.service import subscription_service
from betwise.logging_config import get_logger
from betwise.payouts.models import PayoutRequestResponse
from betwise.payouts.service import PayoutError, payout_service

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/payout", response_model=PayoutRequestResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def legacy_payout(request: Request, user: UserAccount = Depends(require_auth)):
    """Request a payout of the full available balance.

    Kept for older clients; same rules as ``POST /payouts/request``.
    """
    try:
        return payout_service.request_payout(user.id)
    except PayoutError as e:
        raise payout_http_error(e)


@router.get("/history", response_model=list[PaymentResponse])
async def payment_history(user: UserAccount = Depends(require_auth)):
    """Own ledger rows: subscription charges (positive) and payouts (negative)."""
    return subscription_service.get_payment_history(user.id)
