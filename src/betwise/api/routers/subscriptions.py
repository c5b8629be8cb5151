"""Subscription endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from betwise.auth.middleware import require_admin, require_auth
from betwise.auth.models import UserAccount
from betwise.billing.models import CheckoutRequest, CheckoutResponse, SubscriptionResponse
from betwise.billing.service import (
    SubscriptionConflictError,
    SubscriptionNotFoundError,
    subscription_service,
)
from betwise.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("/create", response_model=CheckoutResponse)
async def create_subscription(body: CheckoutRequest, user: UserAccount = Depends(require_auth)):
    """Start a Stripe Checkout session for a monthly plan.

    The subscription becomes ACTIVE once Stripe reports the completed checkout.
    """
    try:
        checkout = subscription_service.create_checkout(user, body.plan)
    except SubscriptionConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        logger.error("checkout_unavailable", user_id=user.id, error=str(e))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return CheckoutResponse(**checkout)


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(user: UserAccount = Depends(require_auth)):
    """Cancel the active subscription at the end of the billing period."""
    try:
        return subscription_service.cancel(user)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/status")
async def subscription_status(user: UserAccount = Depends(require_auth)):
    subscription = subscription_service.get_status(user)
    return {
        "subscription": SubscriptionResponse.model_validate(subscription) if subscription else None,
    }


@router.get("/all")
async def all_subscriptions(admin: UserAccount = Depends(require_admin)):
    """Every subscription with the owner's email (admin only)."""
    return {"subscriptions": subscription_service.list_all()}
