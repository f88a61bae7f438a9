from typing import Any

import httpx
from fastapi import HTTPException, status

from esgreport_api.core.settings import get_settings


def stripe_headers() -> dict[str, str]:
    settings = get_settings()
    secret_key = settings.STRIPE_SECRET_KEY
    if not secret_key or not secret_key.strip():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe is not configured.",
        )
    return {
        "Authorization": f"Bearer {secret_key.strip()}",
        "Accept": "application/json",
    }


def _stripe_error_detail(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    return message if isinstance(message, str) and message else None


async def _stripe_request(
    method: str,
    path: str,
    *,
    data: dict[str, str] | None = None,
    error_detail: str,
) -> dict[str, Any]:
    settings = get_settings()
    url = f"{settings.STRIPE_API_BASE.rstrip('/')}/{path.lstrip('/')}"
    headers = stripe_headers()

    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            response = await client.request(method, url, data=data, headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        stripe_detail = _stripe_error_detail(exc.response)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"{error_detail}: {stripe_detail}" if stripe_detail else error_detail,
        ) from exc
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_detail) from exc

    try:
        payload = response.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Invalid Stripe response: {path}")
    return payload


async def create_customer(*, name: str | None, email: str | None, organization_id: str) -> dict[str, Any]:
    data = {"metadata[organization_id]": organization_id}
    if name:
        data["name"] = name
    if email:
        data["email"] = email
    return await _stripe_request("POST", "customers", data=data, error_detail="Failed to create Stripe customer")


async def create_checkout_session(
    *,
    customer_id: str,
    price_id: str,
    tier: str,
    organization_id: str,
    success_url: str,
    cancel_url: str,
) -> dict[str, Any]:
    data = {
        "customer": customer_id,
        "mode": "subscription",
        "success_url": success_url,
        "cancel_url": cancel_url,
        "line_items[0][price]": price_id,
        "line_items[0][quantity]": "1",
        "metadata[organization_id]": organization_id,
        "metadata[tier]": tier,
        "subscription_data[metadata][organization_id]": organization_id,
        "subscription_data[metadata][tier]": tier,
    }
    return await _stripe_request(
        "POST",
        "checkout/sessions",
        data=data,
        error_detail="Failed to create checkout session",
    )


async def retrieve_subscription(subscription_id: str) -> dict[str, Any]:
    return await _stripe_request(
        "GET",
        f"subscriptions/{subscription_id}",
        error_detail="Failed to fetch subscription",
    )


async def cancel_subscription(subscription_id: str) -> dict[str, Any]:
    return await _stripe_request(
        "DELETE",
        f"subscriptions/{subscription_id}",
        error_detail="Failed to cancel subscription",
    )


async def update_subscription(subscription_id: str, data: dict[str, str]) -> dict[str, Any]:
    return await _stripe_request(
        "POST",
        f"subscriptions/{subscription_id}",
        data=data,
        error_detail="Failed to update subscription",
    )


async def create_portal_session(*, customer_id: str, return_url: str) -> dict[str, Any]:
    return await _stripe_request(
        "POST",
        "billing_portal/sessions",
        data={"customer": customer_id, "return_url": return_url},
        error_detail="Failed to create portal session",
    )
