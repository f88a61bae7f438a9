from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from esgreport_api.billing.models import SubscriptionTier


class _CamelCaseIn(BaseModel):
    # The web client posts camelCase keys.
    model_config = ConfigDict(populate_by_name=True)


class CheckoutIn(_CamelCaseIn):
    price_id: str = Field(alias="priceId", min_length=1)
    tier: SubscriptionTier
    success_url: str = Field(alias="successUrl", min_length=1)
    cancel_url: str = Field(alias="cancelUrl", min_length=1)


class CheckoutOut(BaseModel):
    session_id: str | None
    url: str | None


class SubscriptionOut(BaseModel):
    subscription: dict[str, Any] | None


class SubscriptionActionIn(_CamelCaseIn):
    action: str = Field(min_length=1)
    new_tier: SubscriptionTier | None = Field(default=None, alias="newTier")
    new_price_id: str | None = Field(default=None, alias="newPriceId")


class SubscriptionActionOut(BaseModel):
    success: bool = True
    url: str | None = None
    change_type: str | None = None


class InvoiceCreateIn(_CamelCaseIn):
    organization_id: UUID = Field(alias="organizationId")
    custom_charge_ids: list[UUID] | None = Field(default=None, alias="customChargeIds")
    amount: Decimal | None = Field(default=None, gt=0)
    description: str | None = Field(default=None, max_length=500)
    due_date: datetime | None = Field(default=None, alias="dueDate")

    @model_validator(mode="after")
    def charges_or_amount(self) -> "InvoiceCreateIn":
        if not self.custom_charge_ids and self.amount is None:
            raise ValueError("customChargeIds or amount must be provided")
        return self


class InvoiceCreateOut(BaseModel):
    success: bool = True
    invoice: dict[str, Any]
