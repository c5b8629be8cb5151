"""Billing module for subscriptions, the payment ledger and Stripe events."""

from betwise.billing.models import Payment, ProcessedWebhookEvent, Subscription

__all__ = ["Payment", "ProcessedWebhookEvent", "Subscription"]
