"""Stripe integration for Betwise.

Thin wrappers around the Stripe API so the rest of the code base (and the
tests) deal with plain function calls: subscription checkout, Connect
accounts for referrers, transfers/payouts, and webhook verification.
"""

import json
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from betwise.logging_config import get_logger
from betwise.settings import settings

logger = get_logger(__name__)

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key
stripe.api_version = settings.stripe_api_version


def _require_stripe() -> None:
    if not settings.stripe_secret_key:
        raise ValueError("Stripe is not configured")


def to_cents(amount: Decimal) -> int:
    """Convert a money amount to Stripe's integer minor units."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | None) -> Decimal:
    """Convert Stripe minor units to a money amount."""
    return (Decimal(cents or 0) / 100).quantize(Decimal("0.01"))


# ==================== SUBSCRIPTIONS ====================


def create_subscription_checkout(
    user_id: int,
    user_email: str,
    plan: str,
    unit_amount: Decimal,
    success_url: str,
    cancel_url: str,
) -> stripe.checkout.Session:
    """Create a Stripe Checkout session for a monthly subscription.

    Args:
        user_id: User's ID
        user_email: User's email
        plan: Plan name (BASIC, PREMIUM, VIP)
        unit_amount: Monthly price
        success_url: URL to redirect after successful payment
        cancel_url: URL to redirect after cancelled payment

    Returns:
        Checkout session

    Raises:
        ValueError: If Stripe is not configured
    """
    _require_stripe()

    session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        line_items=[
            {
                "price_data": {
                    "currency": settings.platform_currency,
                    "product_data": {"name": f"Betwise {plan} Plan"},
                    "unit_amount": to_cents(unit_amount),
                    "recurring": {"interval": "month"},
                },
                "quantity": 1,
            }
        ],
        mode="subscription",
        success_url=success_url,
        cancel_url=cancel_url,
        customer_email=user_email,
        metadata={"userId": str(user_id), "plan": plan},
        subscription_data={"metadata": {"userId": str(user_id), "plan": plan}},
    )

    logger.info(
        "checkout_session_created",
        user_id=user_id,
        plan=plan,
        session_id=session.id,
    )

    return session


def cancel_subscription_at_period_end(stripe_subscription_id: str) -> None:
    """Ask Stripe to stop renewing a subscription."""
    _require_stripe()
    stripe.Subscription.modify(stripe_subscription_id, cancel_at_period_end=True)
    logger.info("stripe_subscription_cancel_requested", stripe_subscription_id=stripe_subscription_id)


# ==================== CONNECT ACCOUNTS ====================


def create_connected_account(
    email: str,
    country: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> stripe.Account:
    """Create a Stripe Express account with manual payout schedule.

    Args:
        email: Account holder email
        country: ISO-2 country code
        first_name: Optional first name
        last_name: Optional last name

    Returns:
        Created Stripe account
    """
    _require_stripe()

    individual: dict[str, Any] = {"email": email}
    if first_name:
        individual["first_name"] = first_name
    if last_name:
        individual["last_name"] = last_name

    account = stripe.Account.create(
        type="express",
        email=email,
        country=country,
        capabilities={"transfers": {"requested": True}},
        business_type="individual",
        individual=individual,
        settings={"payouts": {"schedule": {"interval": "manual"}}},
    )

    logger.info("stripe_account_created", account_id=account.id, country=country)
    return account


def create_account_link(account_id: str, refresh_url: str, return_url: str) -> str:
    """Create an onboarding link for a connected account.

    Returns:
        Onboarding URL
    """
    _require_stripe()
    link = stripe.AccountLink.create(
        account=account_id,
        refresh_url=refresh_url,
        return_url=return_url,
        type="account_onboarding",
    )
    return link.url


def retrieve_account(account_id: str) -> stripe.Account:
    """Fetch the current state of a connected account."""
    _require_stripe()
    return stripe.Account.retrieve(account_id)


def account_flags(account: Any) -> dict[str, Any]:
    """Extract the Connect capability flags we persist on the user."""
    requirements = getattr(account, "requirements", None)
    currently_due = getattr(requirements, "currently_due", None) if requirements else None
    return {
        "stripe_onboarding_complete": bool(getattr(account, "details_submitted", False)),
        "stripe_payouts_enabled": bool(getattr(account, "payouts_enabled", False)),
        "stripe_charges_enabled": bool(getattr(account, "charges_enabled", False)),
        "stripe_requirements_due": list(currently_due) if currently_due else None,
    }


# ==================== MONEY MOVEMENT ====================


def create_transfer(
    amount: Decimal,
    currency: str,
    destination: str,
    metadata: dict[str, str],
) -> stripe.Transfer:
    """Move funds from the platform balance to a connected account."""
    _require_stripe()
    transfer = stripe.Transfer.create(
        amount=to_cents(amount),
        currency=currency,
        destination=destination,
        metadata=metadata,
    )
    logger.info("stripe_transfer_created", transfer_id=transfer.id, destination=destination, amount=str(amount))
    return transfer


def create_payout(
    amount: Decimal,
    currency: str,
    stripe_account: str,
    metadata: dict[str, str],
) -> stripe.Payout:
    """Pay out a connected account's balance to its bank/card."""
    _require_stripe()
    payout = stripe.Payout.create(
        amount=to_cents(amount),
        currency=currency,
        metadata=metadata,
        stripe_account=stripe_account,
    )
    logger.info("stripe_payout_created", payout_id=payout.id, account=stripe_account, amount=str(amount))
    return payout


# ==================== WEBHOOKS ====================


def verify_webhook_signature(payload: bytes, sig_header: str) -> dict[str, Any]:
    """Verify and parse a Stripe webhook event.

    Args:
        payload: Raw request body
        sig_header: Stripe-Signature header value

    Returns:
        Event payload as a plain dict

    Raises:
        ValueError: If the secret is missing, the signature is invalid
            or the body is not JSON
    """
    if not settings.stripe_webhook_secret:
        raise ValueError("Stripe webhook secret is not configured")

    body = payload.decode("utf-8")
    try:
        stripe.WebhookSignature.verify_header(
            body,
            sig_header,
            settings.stripe_webhook_secret,
            stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError:
        raise ValueError("Invalid webhook signature")

    try:
        return json.loads(body)
    except json.JSONDecodeError:
        raise ValueError("Invalid webhook payload")
