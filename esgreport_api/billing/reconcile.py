"""Pure reconciliation of Stripe events against an organization's billing state.

Nothing here performs I/O: ``reconcile`` takes the current ``BillingAccount`` and a
parsed event and returns the writes to perform. ``StripeWebhookProcessor`` wraps
persistence around it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from esgreport_api.billing.events import (
    CheckoutSessionCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
    WebhookEvent,
)
from esgreport_api.billing.models import (
    BillingAccount,
    ChangeType,
    InvoiceRecord,
    PaymentRecord,
    SubscriptionHistoryEntry,
    SubscriptionStatus,
)

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class AccountLookup:
    column: str
    value: str


@dataclass(frozen=True)
class Reconciliation:
    account_changes: dict[str, Any] = field(default_factory=dict)
    history: SubscriptionHistoryEntry | None = None
    invoice: InvoiceRecord | None = None
    payment: PaymentRecord | None = None

    @property
    def is_noop(self) -> bool:
        return not self.account_changes and self.history is None and self.invoice is None and self.payment is None


def to_major_units(minor_units: int) -> Decimal:
    return (Decimal(minor_units) / 100).quantize(_CENTS)


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def account_lookup(event: WebhookEvent) -> AccountLookup | None:
    """Column/value identifying the organization an event applies to, if any."""
    if isinstance(event, CheckoutSessionCompleted):
        return AccountLookup("id", event.organization_id)
    if isinstance(event, SubscriptionUpdated | SubscriptionDeleted):
        return AccountLookup("stripe_subscription_id", event.subscription_id)
    if isinstance(event, InvoicePaid):
        return AccountLookup("id", event.organization_id) if event.organization_id else None
    if isinstance(event, InvoicePaymentFailed):
        return AccountLookup("stripe_customer_id", event.customer_id)
    if isinstance(event, UnhandledEvent):
        return None
    raise TypeError(f"Unsupported webhook event {type(event).__name__}")


def _status_change(account: BillingAccount, new_status: SubscriptionStatus) -> dict[str, Any]:
    if account.subscription_status is new_status:
        return {}
    return {"subscription_status": new_status.value}


def _reconcile_checkout(account: BillingAccount, event: CheckoutSessionCompleted, now: datetime) -> Reconciliation:
    changes: dict[str, Any] = {
        "subscription_tier": event.tier.value,
        "subscription_status": SubscriptionStatus.ACTIVE.value,
    }
    if event.subscription_id:
        changes["stripe_subscription_id"] = event.subscription_id

    history = SubscriptionHistoryEntry(
        organization_id=account.id,
        from_tier=account.subscription_tier,
        to_tier=event.tier,
        from_status=account.subscription_status,
        to_status=SubscriptionStatus.ACTIVE,
        change_type=ChangeType.CREATE,
        changed_by=None,
        effective_date=now,
    )
    return Reconciliation(account_changes=changes, history=history)


def _reconcile_invoice_paid(
    account: BillingAccount, event: InvoicePaid, now: datetime, invoice_number: str | None
) -> Reconciliation:
    if not invoice_number:
        raise ValueError("invoice.paid needs an invoice number")

    paid_date = datetime.fromtimestamp(event.paid_at, UTC) if event.paid_at is not None else now
    amount = to_major_units(event.amount_paid)
    invoice = InvoiceRecord(
        organization_id=account.id,
        invoice_number=invoice_number,
        amount=amount,
        subtotal=to_major_units(event.subtotal),
        tax_amount=to_major_units(event.tax),
        currency=event.currency.upper(),
        status="paid",
        type="subscription",
        stripe_invoice_id=event.invoice_id,
        paid_date=paid_date,
    )
    payment = PaymentRecord(
        organization_id=account.id,
        amount=amount,
        currency=event.currency.upper(),
        stripe_payment_id=event.payment_intent_id,
        stripe_charge_id=event.charge_id,
    )
    return Reconciliation(invoice=invoice, payment=payment)


def reconcile(
    account: BillingAccount,
    event: WebhookEvent,
    *,
    now: datetime,
    invoice_number: str | None = None,
) -> Reconciliation:
    if isinstance(event, CheckoutSessionCompleted):
        return _reconcile_checkout(account, event, now)

    if isinstance(event, SubscriptionUpdated):
        new_status = event.status
        if new_status is None:
            return Reconciliation()
        return Reconciliation(account_changes=_status_change(account, new_status))

    if isinstance(event, SubscriptionDeleted):
        if account.subscription_status is SubscriptionStatus.CANCELLED:
            return Reconciliation()
        return Reconciliation(
            account_changes={
                "subscription_status": SubscriptionStatus.CANCELLED.value,
                "subscription_expires_at": _iso(now),
            }
        )

    if isinstance(event, InvoicePaid):
        return _reconcile_invoice_paid(account, event, now, invoice_number)

    if isinstance(event, InvoicePaymentFailed):
        if account.subscription_status is SubscriptionStatus.CANCELLED:
            return Reconciliation()
        return Reconciliation(account_changes=_status_change(account, SubscriptionStatus.PAST_DUE))

    if isinstance(event, UnhandledEvent):
        return Reconciliation()

    raise TypeError(f"Unsupported webhook event {type(event).__name__}")


def apply_changes(account: BillingAccount, changes: dict[str, Any]) -> BillingAccount:
    """Return the account as it reads after ``changes`` are written."""
    row: dict[str, Any] = {
        "id": account.id,
        "name": account.name,
        "subscription_tier": account.subscription_tier.value if account.subscription_tier else None,
        "subscription_status": account.subscription_status.value if account.subscription_status else None,
        "stripe_customer_id": account.stripe_customer_id,
        "stripe_subscription_id": account.stripe_subscription_id,
        "subscription_expires_at": _iso(account.subscription_expires_at) if account.subscription_expires_at else None,
    }
    row.update(changes)
    return BillingAccount.from_row(row)
