from fastapi import APIRouter, Depends, HTTPException, Request, status

from esgreport_api.api.v1.schemas.billing import (
    CheckoutIn,
    CheckoutOut,
    SubscriptionActionIn,
    SubscriptionActionOut,
    SubscriptionOut,
)
from esgreport_api.billing import subscriptions
from esgreport_api.billing.accounts import UserBillingContext, resolve_billing_context
from esgreport_api.core.settings import get_settings
from esgreport_api.core.supabase_jwt import VerifiedSupabaseAuth, verify_supabase_auth

router = APIRouter()
supabase_auth_dependency = Depends(verify_supabase_auth)


async def get_billing_context(auth: VerifiedSupabaseAuth = supabase_auth_dependency) -> UserBillingContext:
    return await resolve_billing_context(auth)


billing_context_dependency = Depends(get_billing_context)


def _invalid_request() -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request")


@router.post("/billing/checkout")
async def create_checkout(
    payload: CheckoutIn, context: UserBillingContext = billing_context_dependency
) -> CheckoutOut:
    session = await subscriptions.start_checkout(
        context,
        price_id=payload.price_id,
        tier=payload.tier,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
    )
    return CheckoutOut.model_validate(session)


@router.get("/billing/subscription")
async def subscription(context: UserBillingContext = billing_context_dependency) -> SubscriptionOut:
    return SubscriptionOut(subscription=await subscriptions.get_subscription(context))


@router.post("/billing/subscription")
async def manage_subscription(
    payload: SubscriptionActionIn,
    request: Request,
    context: UserBillingContext = billing_context_dependency,
) -> SubscriptionActionOut:
    if payload.action == "portal":
        return_base_url = request.headers.get("origin") or get_settings().SITE_URL
        url = await subscriptions.open_billing_portal(context, return_base_url=return_base_url)
        return SubscriptionActionOut(url=url)

    if payload.action == "cancel":
        await subscriptions.cancel(context)
        return SubscriptionActionOut()

    if payload.action == "update":
        if payload.new_price_id is None or payload.new_tier is None:
            raise _invalid_request()
        change_type = await subscriptions.change_plan(
            context,
            new_price_id=payload.new_price_id,
            new_tier=payload.new_tier,
        )
        return SubscriptionActionOut(change_type=change_type.value)

    if payload.action == "reactivate":
        await subscriptions.reactivate(context)
        return SubscriptionActionOut()

    raise _invalid_request()
