"""Typed Stripe webhook events parsed from the raw event envelope."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from esgreport_api.billing.errors import MalformedEventError
from esgreport_api.billing.models import SubscriptionStatus, SubscriptionTier, parse_status, parse_tier

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


@dataclass(frozen=True)
class CheckoutSessionCompleted:
    event_id: str | None
    organization_id: str
    tier: SubscriptionTier
    subscription_id: str | None
    customer_id: str | None
    event_type: str = CHECKOUT_SESSION_COMPLETED


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str | None
    subscription_id: str
    stripe_status: str
    event_type: str = SUBSCRIPTION_UPDATED

    @property
    def status(self) -> SubscriptionStatus | None:
        return parse_status(self.stripe_status)


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str | None
    subscription_id: str
    event_type: str = SUBSCRIPTION_DELETED


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str | None
    invoice_id: str
    organization_id: str | None
    amount_paid: int
    subtotal: int
    tax: int
    currency: str
    paid_at: int | None
    payment_intent_id: str | None
    charge_id: str | None
    event_type: str = INVOICE_PAID


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str | None
    customer_id: str
    event_type: str = INVOICE_PAYMENT_FAILED


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str | None
    event_type: str


WebhookEvent = Union[
    CheckoutSessionCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    UnhandledEvent,
]


def _required_str(payload: dict[str, Any], key: str, event_type: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedEventError(f"{event_type} is missing {key}", event_type=event_type)
    return value.strip()


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if isinstance(value, dict):
        # Expanded Stripe objects carry their id inline.
        value = value.get("id")
    return value.strip() if isinstance(value, str) and value.strip() else None


def _required_int(payload: dict[str, Any], key: str, event_type: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedEventError(f"{event_type} is missing {key}", event_type=event_type)
    return value


def _optional_int(payload: dict[str, Any], key: str) -> int | None:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _metadata(payload: dict[str, Any]) -> dict[str, Any]:
    metadata = payload.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _parse_checkout_session(event_id: str | None, session: dict[str, Any]) -> CheckoutSessionCompleted:
    event_type = CHECKOUT_SESSION_COMPLETED
    metadata = _metadata(session)
    organization_id = _required_str(metadata, "organization_id", event_type)
    raw_tier = _required_str(metadata, "tier", event_type)
    tier = parse_tier(raw_tier)
    if tier is None:
        raise MalformedEventError(f"{event_type} has unknown tier {raw_tier!r}", event_type=event_type)
    return CheckoutSessionCompleted(
        event_id=event_id,
        organization_id=organization_id,
        tier=tier,
        subscription_id=_optional_str(session, "subscription"),
        customer_id=_optional_str(session, "customer"),
    )


def _parse_invoice_paid(event_id: str | None, invoice: dict[str, Any]) -> InvoicePaid:
    event_type = INVOICE_PAID
    transitions = invoice.get("status_transitions")
    paid_at = _optional_int(transitions, "paid_at") if isinstance(transitions, dict) else None
    amount_paid = _required_int(invoice, "amount_paid", event_type)
    subtotal = _optional_int(invoice, "subtotal")
    return InvoicePaid(
        event_id=event_id,
        invoice_id=_required_str(invoice, "id", event_type),
        organization_id=_optional_str(_metadata(invoice), "organization_id"),
        amount_paid=amount_paid,
        subtotal=subtotal if subtotal is not None else amount_paid,
        tax=_optional_int(invoice, "tax") or 0,
        currency=_required_str(invoice, "currency", event_type).upper(),
        paid_at=paid_at,
        payment_intent_id=_optional_str(invoice, "payment_intent"),
        charge_id=_optional_str(invoice, "charge"),
    )


def parse_event(envelope: Any) -> WebhookEvent:
    """Turn a decoded Stripe event envelope into one of the typed variants.

    Unknown types come back as ``UnhandledEvent``; known types with missing
    required fields raise ``MalformedEventError``.
    """
    if not isinstance(envelope, dict):
        raise MalformedEventError("Event payload must be a JSON object")

    event_type = envelope.get("type")
    if not isinstance(event_type, str) or not event_type.strip():
        raise MalformedEventError("Event is missing type")
    event_type = event_type.strip()
    event_id = _optional_str(envelope, "id")

    data = envelope.get("data")
    payload = data.get("object") if isinstance(data, dict) else None
    if not isinstance(payload, dict):
        raise MalformedEventError(f"{event_type} is missing data.object", event_type=event_type)

    if event_type == CHECKOUT_SESSION_COMPLETED:
        return _parse_checkout_session(event_id, payload)
    if event_type == SUBSCRIPTION_UPDATED:
        return SubscriptionUpdated(
            event_id=event_id,
            subscription_id=_required_str(payload, "id", event_type),
            stripe_status=_required_str(payload, "status", event_type),
        )
    if event_type == SUBSCRIPTION_DELETED:
        return SubscriptionDeleted(
            event_id=event_id,
            subscription_id=_required_str(payload, "id", event_type),
        )
    if event_type == INVOICE_PAID:
        return _parse_invoice_paid(event_id, payload)
    if event_type == INVOICE_PAYMENT_FAILED:
        customer_id = _optional_str(payload, "customer")
        if customer_id is None:
            raise MalformedEventError(f"{event_type} is missing customer", event_type=event_type)
        return InvoicePaymentFailed(event_id=event_id, customer_id=customer_id)
    return UnhandledEvent(event_id=event_id, event_type=event_type)
