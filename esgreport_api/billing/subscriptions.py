from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status

from esgreport_api.billing.accounts import UserBillingContext
from esgreport_api.billing.models import (
    ChangeType,
    SubscriptionHistoryEntry,
    SubscriptionStatus,
    SubscriptionTier,
    change_type_for_tiers,
)
from esgreport_api.core.logging import get_logger
from esgreport_api.core.stripe_rest import (
    cancel_subscription,
    create_checkout_session,
    create_customer,
    create_portal_session,
    retrieve_subscription,
    update_subscription,
)
from esgreport_api.core.supabase_rest import insert_subscription_history, update_billing_account

logger = get_logger("billing.subscriptions")


def _require_subscription_id(context: UserBillingContext) -> str:
    subscription_id = context.account.stripe_subscription_id
    if not subscription_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Organization has no subscription")
    return subscription_id


def _require_customer_id(context: UserBillingContext) -> str:
    customer_id = context.account.stripe_customer_id
    if not customer_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Organization has no billing customer")
    return customer_id


async def start_checkout(
    context: UserBillingContext,
    *,
    price_id: str,
    tier: SubscriptionTier,
    success_url: str,
    cancel_url: str,
) -> dict[str, Any]:
    account = context.account
    customer_id = account.stripe_customer_id

    if not customer_id:
        customer = await create_customer(name=account.name, email=context.email, organization_id=account.id)
        customer_id = customer.get("id")
        if not isinstance(customer_id, str) or not customer_id:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Invalid Stripe customer response")
        await update_billing_account(account.id, {"stripe_customer_id": customer_id})
        logger.info(
            "checkout.customer_created",
            extra={"component": "billing", "organization_id": account.id, "stripe_customer_id": customer_id},
        )

    session = await create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        tier=tier.value,
        organization_id=account.id,
        success_url=success_url,
        cancel_url=cancel_url,
    )
    logger.info(
        "checkout.session_created",
        extra={"component": "billing", "organization_id": account.id, "tier": tier.value},
    )
    return {"session_id": session.get("id"), "url": session.get("url")}


async def get_subscription(context: UserBillingContext) -> dict[str, Any] | None:
    if not context.account.stripe_subscription_id:
        return None
    return await retrieve_subscription(context.account.stripe_subscription_id)


async def open_billing_portal(context: UserBillingContext, *, return_base_url: str) -> str:
    customer_id = _require_customer_id(context)
    session = await create_portal_session(
        customer_id=customer_id,
        return_url=f"{return_base_url.rstrip('/')}/dashboard/billing",
    )
    url = session.get("url")
    if not isinstance(url, str) or not url:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Invalid portal session response")
    return url


async def cancel(context: UserBillingContext, *, now: datetime | None = None) -> None:
    account = context.account
    if account.subscription_status is SubscriptionStatus.CANCELLED:
        return

    subscription_id = _require_subscription_id(context)
    await cancel_subscription(subscription_id)
    await update_billing_account(account.id, {"subscription_status": SubscriptionStatus.CANCELLED.value})
    await insert_subscription_history(
        SubscriptionHistoryEntry(
            organization_id=account.id,
            from_tier=account.subscription_tier,
            to_tier=account.subscription_tier,
            from_status=account.subscription_status,
            to_status=SubscriptionStatus.CANCELLED,
            change_type=ChangeType.CANCEL,
            changed_by=context.user_id,
            effective_date=now or datetime.now(UTC),
        ).to_row()
    )
    logger.info("subscription.cancelled", extra={"component": "billing", "organization_id": account.id})


async def change_plan(
    context: UserBillingContext,
    *,
    new_price_id: str,
    new_tier: SubscriptionTier,
    now: datetime | None = None,
) -> ChangeType:
    account = context.account
    subscription_id = _require_subscription_id(context)

    subscription = await retrieve_subscription(subscription_id)
    items = subscription.get("items")
    item_rows = items.get("data") if isinstance(items, dict) else None
    item_id = item_rows[0].get("id") if isinstance(item_rows, list) and item_rows and isinstance(item_rows[0], dict) else None
    if not isinstance(item_id, str) or not item_id:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Subscription has no items")

    await update_subscription(
        subscription_id,
        {
            "items[0][id]": item_id,
            "items[0][price]": new_price_id,
            "proration_behavior": "create_prorations",
        },
    )
    await update_billing_account(account.id, {"subscription_tier": new_tier.value})

    change_type = change_type_for_tiers(account.subscription_tier, new_tier)
    await insert_subscription_history(
        SubscriptionHistoryEntry(
            organization_id=account.id,
            from_tier=account.subscription_tier,
            to_tier=new_tier,
            from_status=account.subscription_status,
            to_status=account.subscription_status,
            change_type=change_type,
            changed_by=context.user_id,
            effective_date=now or datetime.now(UTC),
        ).to_row()
    )
    logger.info(
        "subscription.plan_changed",
        extra={
            "component": "billing",
            "organization_id": account.id,
            "change_type": change_type.value,
            "to_tier": new_tier.value,
        },
    )
    return change_type


async def reactivate(context: UserBillingContext) -> None:
    if context.account.subscription_status is SubscriptionStatus.CANCELLED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Subscription is already cancelled")
    subscription_id = _require_subscription_id(context)
    await update_subscription(subscription_id, {"cancel_at_period_end": "false"})
    logger.info("subscription.reactivated", extra={"component": "billing", "organization_id": context.account.id})
