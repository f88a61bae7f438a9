from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class SubscriptionTier(str, Enum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    SubscriptionTier.STARTER: 1,
    SubscriptionTier.PROFESSIONAL: 2,
    SubscriptionTier.ENTERPRISE: 3,
}


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class ChangeType(str, Enum):
    CREATE = "create"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    CANCEL = "cancel"


# Stripe subscription statuses mapped onto ours. Statuses absent here
# (incomplete, paused) carry no billing meaning for an organization.
_STRIPE_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "cancelled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
}


def parse_tier(value: str | None) -> SubscriptionTier | None:
    if not isinstance(value, str):
        return None
    try:
        return SubscriptionTier(value.strip().lower())
    except ValueError:
        return None


def parse_status(value: str | None) -> SubscriptionStatus | None:
    if not isinstance(value, str):
        return None
    return _STRIPE_STATUS_MAP.get(value.strip().lower())


def change_type_for_tiers(from_tier: SubscriptionTier | None, to_tier: SubscriptionTier) -> ChangeType:
    if from_tier is None or to_tier.rank >= from_tier.rank:
        return ChangeType.UPGRADE
    return ChangeType.DOWNGRADE


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat().replace("+00:00", "Z") if value is not None else None


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class BillingAccount:
    """Billing fields of an ``organizations`` row."""

    id: str
    subscription_tier: SubscriptionTier | None
    subscription_status: SubscriptionStatus | None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    subscription_expires_at: datetime | None = None
    name: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> BillingAccount:
        return cls(
            id=str(row["id"]),
            subscription_tier=parse_tier(row.get("subscription_tier")),
            subscription_status=parse_status(row.get("subscription_status")),
            stripe_customer_id=row.get("stripe_customer_id") or None,
            stripe_subscription_id=row.get("stripe_subscription_id") or None,
            subscription_expires_at=_parse_datetime(row.get("subscription_expires_at")),
            name=row.get("name") if isinstance(row.get("name"), str) else None,
        )


@dataclass(frozen=True)
class SubscriptionHistoryEntry:
    organization_id: str
    to_status: SubscriptionStatus | None
    change_type: ChangeType
    effective_date: datetime
    from_tier: SubscriptionTier | None = None
    to_tier: SubscriptionTier | None = None
    from_status: SubscriptionStatus | None = None
    changed_by: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "from_tier": self.from_tier.value if self.from_tier else None,
            "to_tier": self.to_tier.value if self.to_tier else None,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value if self.to_status else None,
            "change_type": self.change_type.value,
            "changed_by": self.changed_by,
            "effective_date": _isoformat(self.effective_date),
        }


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal

    def to_row(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "quantity": float(self.quantity),
            "unit_price": float(self.unit_price),
            "amount": float(self.amount),
        }


@dataclass(frozen=True)
class InvoiceRecord:
    organization_id: str
    invoice_number: str
    amount: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    currency: str
    status: str
    type: str
    stripe_invoice_id: str | None = None
    paid_date: datetime | None = None
    description: str | None = None
    line_items: list[LineItem] = field(default_factory=list)
    due_date: datetime | None = None
    created_by: str | None = None

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["amount"] = float(self.amount)
        row["subtotal"] = float(self.subtotal)
        row["tax_amount"] = float(self.tax_amount)
        row["paid_date"] = _isoformat(self.paid_date)
        row["due_date"] = _isoformat(self.due_date)
        row["line_items"] = [item.to_row() for item in self.line_items]
        return {key: value for key, value in row.items() if value is not None}


@dataclass(frozen=True)
class PaymentRecord:
    organization_id: str
    amount: Decimal
    currency: str
    stripe_payment_id: str | None
    stripe_charge_id: str | None
    payment_method: str = "card"
    status: str = "succeeded"

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["amount"] = float(self.amount)
        return row
