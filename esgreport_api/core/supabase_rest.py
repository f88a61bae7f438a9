from typing import Any

import httpx
from fastapi import HTTPException, status

from esgreport_api.core.settings import get_settings

BILLING_ACCOUNT_COLUMNS = (
    "id,name,subscription_tier,subscription_status,stripe_customer_id,"
    "stripe_subscription_id,subscription_expires_at"
)
BILLING_LOOKUP_COLUMNS = frozenset({"id", "stripe_customer_id", "stripe_subscription_id"})


def supabase_rest_headers(access_token: str) -> dict[str, str]:
    settings = get_settings()
    return {
        "Authorization": f"Bearer {access_token}",
        "apikey": settings.SUPABASE_ANON_KEY,
        "Accept": "application/json",
    }


def supabase_service_role_headers() -> dict[str, str]:
    settings = get_settings()
    service_role_key = settings.SUPABASE_SERVICE_ROLE_KEY
    if not service_role_key or not service_role_key.strip():
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Billing persistence is not configured.",
        )
    return {
        "Authorization": f"Bearer {service_role_key}",
        "apikey": service_role_key,
        "Accept": "application/json",
    }


def _table_url(table: str) -> str:
    settings = get_settings()
    return f"{settings.SUPABASE_URL.rstrip('/')}/rest/v1/{table}"


def _timeout() -> float:
    return get_settings().HTTP_TIMEOUT_SECONDS


def _supabase_error_detail(response: httpx.Response) -> str | None:
    payload: Any
    try:
        payload = response.json()
    except ValueError:
        return None

    if not isinstance(payload, dict):
        return None

    detail = payload.get("message")
    if isinstance(detail, str) and detail:
        return detail

    detail = payload.get("detail")
    if isinstance(detail, str) and detail:
        return detail

    return None


def _json_body(response: httpx.Response, error_message: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_message) from exc


def _validated_list_payload(payload: Any, error_message: str) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=error_message,
        )

    for item in payload:
        if not isinstance(item, dict):
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=error_message,
            )

    return payload


async def _service_role_select(table: str, params: dict[str, str], *, error_detail: str) -> list[dict[str, Any]]:
    try:
        async with httpx.AsyncClient(timeout=_timeout()) as client:
            response = await client.get(_table_url(table), params=params, headers=supabase_service_role_headers())
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_detail) from exc

    error_message = f"Invalid {table} response from Supabase."
    return _validated_list_payload(_json_body(response, error_message), error_message)


async def _service_role_insert(table: str, payload: dict[str, Any], *, error_detail: str) -> dict[str, Any]:
    headers = supabase_service_role_headers()
    headers["Prefer"] = "return=representation"

    try:
        async with httpx.AsyncClient(timeout=_timeout()) as client:
            response = await client.post(_table_url(table), json=payload, headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        detail = _supabase_error_detail(exc.response)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"{error_detail} {detail}" if detail else error_detail,
        ) from exc
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_detail) from exc

    error_message = f"Invalid {table} insert response from Supabase."
    rows = _validated_list_payload(_json_body(response, error_message), error_message)
    if not rows:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_message)
    return rows[0]


async def _service_role_patch(
    table: str,
    params: dict[str, str],
    payload: dict[str, Any],
    *,
    error_detail: str,
) -> None:
    headers = supabase_service_role_headers()
    headers["Prefer"] = "return=minimal"

    try:
        async with httpx.AsyncClient(timeout=_timeout()) as client:
            response = await client.patch(_table_url(table), params=params, json=payload, headers=headers)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error_detail) from exc


async def select_billing_account(column: str, value: str) -> dict[str, Any] | None:
    if column not in BILLING_LOOKUP_COLUMNS:
        raise ValueError(f"Unsupported billing lookup column: {column}")

    rows = await _service_role_select(
        "organizations",
        {"select": BILLING_ACCOUNT_COLUMNS, column: f"eq.{value}", "limit": "1"},
        error_detail="Failed to fetch organization billing state from Supabase.",
    )
    return rows[0] if rows else None


async def update_billing_account(org_id: str, changes: dict[str, Any]) -> None:
    await _service_role_patch(
        "organizations",
        {"id": f"eq.{org_id}"},
        changes,
        error_detail="Failed to update organization billing state in Supabase.",
    )


async def insert_subscription_history(row: dict[str, Any]) -> dict[str, Any]:
    return await _service_role_insert(
        "subscription_history",
        row,
        error_detail="Failed to record subscription history in Supabase.",
    )


async def insert_invoice(row: dict[str, Any]) -> dict[str, Any]:
    return await _service_role_insert("invoices", row, error_detail="Failed to create invoice in Supabase.")


async def insert_payment(row: dict[str, Any]) -> dict[str, Any]:
    return await _service_role_insert("payments", row, error_detail="Failed to record payment in Supabase.")


async def rpc_generate_invoice_number() -> str | None:
    url = f"{get_settings().SUPABASE_URL.rstrip('/')}/rest/v1/rpc/generate_invoice_number"

    try:
        async with httpx.AsyncClient(timeout=_timeout()) as client:
            response = await client.post(url, json={}, headers=supabase_service_role_headers())
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate invoice number in Supabase.",
        ) from exc

    payload = _json_body(response, "Invalid invoice number response from Supabase.")
    return payload.strip() if isinstance(payload, str) and payload.strip() else None


async def select_user_profile(access_token: str, user_id: str) -> dict[str, Any] | None:
    params = {
        "select": "id,email,role,organization_id",
        "id": f"eq.{user_id}",
        "limit": "1",
    }

    try:
        async with httpx.AsyncClient(timeout=_timeout()) as client:
            response = await client.get(_table_url("users"), params=params, headers=supabase_rest_headers(access_token))
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch user profile from Supabase.",
        ) from exc

    error_message = "Invalid user profile response from Supabase."
    rows = _validated_list_payload(_json_body(response, error_message), error_message)
    return rows[0] if rows else None


async def select_approved_custom_charges(charge_ids: list[str]) -> list[dict[str, Any]]:
    if not charge_ids:
        return []
    return await _service_role_select(
        "custom_charges",
        {
            "select": "id,description,hours,hourly_rate,amount,status",
            "id": f"in.({','.join(charge_ids)})",
            "status": "eq.approved",
        },
        error_detail="Failed to fetch custom charges from Supabase.",
    )


async def update_custom_charges(charge_ids: list[str], changes: dict[str, Any]) -> None:
    if not charge_ids:
        return
    await _service_role_patch(
        "custom_charges",
        {"id": f"in.({','.join(charge_ids)})"},
        changes,
        error_detail="Failed to update custom charges in Supabase.",
    )
