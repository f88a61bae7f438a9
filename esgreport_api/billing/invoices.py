from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from fastapi import HTTPException, status

from esgreport_api.billing.models import InvoiceRecord, LineItem
from esgreport_api.core.logging import get_logger
from esgreport_api.core.settings import get_settings
from esgreport_api.core.supabase_rest import (
    insert_invoice,
    rpc_generate_invoice_number,
    select_approved_custom_charges,
    select_billing_account,
    update_custom_charges,
)

logger = get_logger("billing.invoices")


async def next_invoice_number() -> str:
    number = await rpc_generate_invoice_number()
    if number:
        return number
    fallback = f"INV-{int(time.time() * 1000)}"
    logger.warning("invoice.number_fallback", extra={"component": "billing", "invoice_number": fallback})
    return fallback


def _decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def line_item_for_charge(charge: dict[str, Any]) -> LineItem:
    amount = _decimal(charge.get("amount")) or Decimal("0")
    return LineItem(
        description=str(charge.get("description") or "Consulting"),
        quantity=_decimal(charge.get("hours")) or Decimal("1"),
        unit_price=_decimal(charge.get("hourly_rate")) or amount,
        amount=amount,
    )


async def generate_custom_invoice(
    *,
    organization_id: str,
    created_by: str,
    custom_charge_ids: list[str] | None = None,
    amount: Decimal | None = None,
    description: str | None = None,
    due_date: datetime | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Issue a ``sent`` invoice for approved consulting charges or a one-off amount."""
    settings = get_settings()
    now = now or datetime.now(UTC)

    organization = await select_billing_account("id", organization_id)
    if organization is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    invoice_number = await next_invoice_number()

    line_items: list[LineItem] = []
    billed_ids: list[str] = []
    if custom_charge_ids:
        charges = await select_approved_custom_charges(custom_charge_ids)
        line_items = [line_item_for_charge(charge) for charge in charges]
        billed_ids = [str(charge["id"]) for charge in charges if charge.get("id")]
        await update_custom_charges(billed_ids, {"status": "billed"})
    elif amount is not None:
        line_items = [
            LineItem(
                description=description or "Custom service",
                quantity=Decimal("1"),
                unit_price=amount,
                amount=amount,
            )
        ]

    total = sum((item.amount for item in line_items), Decimal("0"))
    invoice = InvoiceRecord(
        organization_id=organization_id,
        invoice_number=invoice_number,
        amount=total,
        subtotal=total,
        tax_amount=Decimal("0"),
        currency=settings.INVOICE_CURRENCY,
        status="sent",
        type="consulting" if custom_charge_ids else "custom",
        description=description,
        line_items=line_items,
        due_date=due_date or now + timedelta(days=settings.INVOICE_DUE_DAYS),
        created_by=created_by,
    )
    created = await insert_invoice(invoice.to_row())

    if billed_ids and created.get("id"):
        await update_custom_charges(billed_ids, {"invoice_id": created["id"]})

    logger.info(
        "invoice.generated",
        extra={
            "component": "billing",
            "organization_id": organization_id,
            "invoice_number": invoice_number,
            "line_items": len(line_items),
        },
    )
    return {**created, "organization_name": organization.get("name")}
