"""Payout endpoints: Connect onboarding, referrer requests and admin review."""

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from betwise.api.rate_limit import limiter
from betwise.auth.middleware import require_admin, require_auth
from betwise.auth.models import UserAccount
from betwise.logging_config import get_logger
from betwise.payouts.models import (
    PayoutAccountStatus,
    PayoutReject,
    PayoutRequestCreate,
    PayoutRequestResponse,
)
from betwise.payouts.service import (
    PayoutError,
    PayoutNotFoundError,
    PayoutProcessingError,
    PayoutStateError,
    PayoutValidationError,
    payout_service,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/payouts", tags=["payouts"])


def payout_http_error(error: PayoutError) -> HTTPException:
    """Translate a payout service error to an HTTP error."""
    if isinstance(error, PayoutNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PayoutStateError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, PayoutValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, PayoutProcessingError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(error))


def stripe_http_error(error: Exception) -> HTTPException:
    if isinstance(error, stripe.StripeError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))


# ==================== CONNECT ACCOUNT ====================


@router.post("/create-account")
async def create_account(user: UserAccount = Depends(require_auth)):
    """Create a Stripe Express account for the current user (idempotent)."""
    try:
        account_id, created = payout_service.ensure_connected_account(user.id)
    except (stripe.StripeError, ValueError) as e:
        logger.error("connected_account_create_failed", user_id=user.id, error=str(e))
        raise stripe_http_error(e)

    return {"account_id": account_id, "created": created}


@router.post("/account-link")
async def account_link(user: UserAccount = Depends(require_auth)):
    """Stripe onboarding URL for the current user's connected account."""
    try:
        url = payout_service.create_onboarding_link(user.id)
    except (stripe.StripeError, ValueError) as e:
        logger.error("account_link_failed", user_id=user.id, error=str(e))
        raise stripe_http_error(e)

    return {"url": url}


@router.get("/status", response_model=PayoutAccountStatus)
async def account_status(user: UserAccount = Depends(require_auth)):
    """Connect flags and commission balance of the current user."""
    return payout_service.refresh_account_status(user.id)


# ==================== REFERRER REQUESTS ====================


@router.get("/my-requests", response_model=list[PayoutRequestResponse])
async def my_requests(user: UserAccount = Depends(require_auth)):
    return payout_service.list_user_requests(user.id)


@router.post("/request", response_model=PayoutRequestResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def request_payout(
    request: Request,
    body: PayoutRequestCreate,
    user: UserAccount = Depends(require_auth),
):
    """Request a withdrawal of accumulated commission.

    Without an amount the whole available balance is requested.
    """
    try:
        return payout_service.request_payout(user.id, amount=body.amount, reason=body.reason)
    except PayoutError as e:
        raise payout_http_error(e)


# ==================== ADMIN ====================


@router.get("/requests")
async def list_requests(
    show_all: bool = Query(default=False),
    admin: UserAccount = Depends(require_admin),
):
    """Requests awaiting review, or every request with ``show_all``."""
    return {"requests": payout_service.list_requests(show_all=show_all)}


@router.post("/requests/{request_id}/approve", response_model=PayoutRequestResponse)
async def approve_request(request_id: int, admin: UserAccount = Depends(require_admin)):
    """Pay a request out through Stripe.

    A Stripe failure leaves the request FAILED with the error as admin note;
    it can be approved again.
    """
    logger.info("payout_approve_requested", payout_request_id=request_id, admin_id=admin.id)
    try:
        return payout_service.approve(request_id)
    except PayoutError as e:
        raise payout_http_error(e)


@router.post("/requests/{request_id}/reject", response_model=PayoutRequestResponse)
async def reject_request(
    request_id: int,
    body: PayoutReject,
    admin: UserAccount = Depends(require_admin),
):
    logger.info("payout_reject_requested", payout_request_id=request_id, admin_id=admin.id)
    try:
        return payout_service.reject(request_id, note=body.note)
    except PayoutError as e:
        raise payout_http_error(e)
