from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from esgreport_api.billing.errors import (
    BillingAccountNotFoundError,
    SignatureVerificationError,
    WebhookConfigurationError,
    WebhookError,
    WebhookHandlingError,
)
from esgreport_api.billing.events import InvoicePaid, SubscriptionUpdated, WebhookEvent, parse_event
from esgreport_api.billing.invoices import next_invoice_number
from esgreport_api.billing.models import BillingAccount
from esgreport_api.billing.reconcile import Reconciliation, account_lookup, reconcile
from esgreport_api.billing.signature import verify_signature
from esgreport_api.core.errors import sanitize_error
from esgreport_api.core.logging import get_logger
from esgreport_api.core.supabase_rest import (
    insert_invoice,
    insert_payment,
    insert_subscription_history,
    select_billing_account,
    update_billing_account,
)

logger = get_logger("billing.webhooks")


@dataclass(frozen=True)
class WebhookOutcome:
    event_type: str
    event_id: str | None
    status: Literal["handled", "ignored"]
    organization_id: str | None = None


def _utc_now() -> datetime:
    return datetime.now(UTC)


class StripeWebhookProcessor:
    """Verify, route and reconcile one Stripe webhook delivery."""

    def __init__(self, *, webhook_secret: str | None, clock: Callable[[], datetime] = _utc_now) -> None:
        self.webhook_secret = (webhook_secret or "").strip()
        self.clock = clock

    def verify(self, raw_body: bytes, signature: str | None) -> WebhookEvent:
        if not self.webhook_secret:
            raise WebhookConfigurationError("Stripe webhook secret not configured")
        if not verify_signature(raw_body, signature, self.webhook_secret):
            raise SignatureVerificationError()
        try:
            envelope = json.loads(raw_body)
        except ValueError as exc:
            raise SignatureVerificationError() from exc
        return parse_event(envelope)

    async def process(self, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        event = self.verify(raw_body, signature)
        logger.info(
            "webhook.event_received",
            extra={"component": "webhooks", "event_type": event.event_type, "event_id": event.event_id},
        )
        try:
            return await self.handle(event)
        except WebhookError:
            raise
        except Exception as exc:
            raise WebhookHandlingError(
                sanitize_error(exc, default_message="Webhook processing failed"),
                event_type=event.event_type,
            ) from exc

    async def handle(self, event: WebhookEvent) -> WebhookOutcome:
        lookup = account_lookup(event)
        if lookup is None:
            logger.info(
                "webhook.event_ignored",
                extra={"component": "webhooks", "event_type": event.event_type, "event_id": event.event_id},
            )
            return WebhookOutcome(event_type=event.event_type, event_id=event.event_id, status="ignored")

        row = await select_billing_account(lookup.column, lookup.value)
        if row is None:
            raise BillingAccountNotFoundError(lookup.column, lookup.value, event_type=event.event_type)
        account = BillingAccount.from_row(row)

        if isinstance(event, SubscriptionUpdated) and event.status is None:
            logger.warning(
                "webhook.subscription_status_unmapped",
                extra={
                    "component": "webhooks",
                    "event_type": event.event_type,
                    "organization_id": account.id,
                    "stripe_status": event.stripe_status,
                },
            )

        invoice_number = await next_invoice_number() if isinstance(event, InvoicePaid) else None
        result = reconcile(account, event, now=self.clock(), invoice_number=invoice_number)
        await self._persist(account, result)

        logger.info(
            "webhook.event_handled",
            extra={
                "component": "webhooks",
                "event_type": event.event_type,
                "event_id": event.event_id,
                "organization_id": account.id,
                "changes": sorted(result.account_changes),
                "noop": result.is_noop,
            },
        )
        return WebhookOutcome(
            event_type=event.event_type,
            event_id=event.event_id,
            status="handled",
            organization_id=account.id,
        )

    async def _persist(self, account: BillingAccount, result: Reconciliation) -> None:
        # Not transactional: account row, then history, invoice, payment.
        if result.account_changes:
            await update_billing_account(account.id, result.account_changes)
        if result.history is not None:
            await insert_subscription_history(result.history.to_row())
        if result.invoice is not None:
            await insert_invoice(result.invoice.to_row())
        if result.payment is not None:
            await insert_payment(result.payment.to_row())
