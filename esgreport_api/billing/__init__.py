from esgreport_api.billing.events import WebhookEvent, parse_event
from esgreport_api.billing.models import (
    BillingAccount,
    ChangeType,
    SubscriptionHistoryEntry,
    SubscriptionStatus,
    SubscriptionTier,
)
from esgreport_api.billing.reconcile import Reconciliation, reconcile
from esgreport_api.billing.signature import verify_signature
from esgreport_api.billing.webhooks import StripeWebhookProcessor, WebhookOutcome

__all__ = [
    "BillingAccount",
    "ChangeType",
    "Reconciliation",
    "StripeWebhookProcessor",
    "SubscriptionHistoryEntry",
    "SubscriptionStatus",
    "SubscriptionTier",
    "WebhookEvent",
    "WebhookOutcome",
    "parse_event",
    "reconcile",
    "verify_signature",
]
