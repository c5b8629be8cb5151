"""Stripe webhook endpoint."""

from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, Request, status

from betwise.billing.models import ProcessedWebhookEvent
from betwise.billing.service import billing_event_service
from betwise.logging_config import get_logger
from betwise.payments.stripe_service import verify_webhook_signature
from betwise.settings import settings
from betwise.storage.db import db

logger = get_logger(__name__)

router = APIRouter(prefix="/stripe", tags=["webhooks"])

STRIPE_SOURCE = "stripe"


def is_event_processed(event_id: str, source: str = STRIPE_SOURCE) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        event_id: The unique event ID from the webhook source
        source: The webhook source (e.g., "stripe")

    Returns:
        True if already processed, False otherwise
    """
    with db.session() as session:
        existing = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.event_id == event_id,
            ProcessedWebhookEvent.source == source,
        ).first()
        return existing is not None


def mark_event_processed(event_id: str, event_type: str, source: str = STRIPE_SOURCE) -> None:
    """Mark a webhook event as processed.

    Args:
        event_id: The unique event ID from the webhook source
        event_type: The type of event (e.g., "invoice.payment_succeeded")
        source: The webhook source (e.g., "stripe")
    """
    with db.session() as session:
        event = ProcessedWebhookEvent(
            event_id=event_id,
            event_type=event_type,
            source=source,
            processed_at=datetime.utcnow(),
        )
        session.add(event)
        session.commit()


def cleanup_old_events(days: int | None = None) -> int:
    """Remove webhook events older than specified days.

    Args:
        days: Number of days to keep events (defaults to settings)

    Returns:
        Number of deleted events
    """
    if days is None:
        days = settings.webhook_event_retention_days
    cutoff = datetime.utcnow() - timedelta(days=days)
    with db.session() as session:
        deleted = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.processed_at < cutoff
        ).delete()
        session.commit()
        return deleted


@router.post("/webhook")
async def stripe_webhook(request: Request):
    """Handle Stripe webhook events.

    Verifies the webhook signature and hands the event to the billing event
    service. Uses database-backed idempotency to prevent duplicate processing;
    a handler failure answers 500 so Stripe redelivers the event.
    """
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = verify_webhook_signature(payload, sig_header)
    except ValueError as e:
        logger.warning("stripe_webhook_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    event_id = event.get("id", "")
    event_type = event.get("type", "")

    if event_id and is_event_processed(event_id):
        logger.info("stripe_webhook_duplicate", event_id=event_id, event_type=event_type)
        return {"received": True, "duplicate": True}

    try:
        handled = billing_event_service.handle_event(event)
    except Exception as e:
        logger.error("stripe_webhook_error", event_id=event_id, event_type=event_type, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error processing webhook event",
        )

    # Mark as processed AFTER successful handling
    if handled and event_id:
        mark_event_processed(event_id, event_type)
        logger.info("stripe_webhook_processed", event_id=event_id, event_type=event_type)

    return {"received": True}
