from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, status

from esgreport_api.billing.models import BillingAccount
from esgreport_api.core.supabase_jwt import VerifiedSupabaseAuth, claims_user_id
from esgreport_api.core.supabase_rest import select_billing_account, select_user_profile


@dataclass(frozen=True)
class UserBillingContext:
    user_id: str
    email: str | None
    role: str | None
    account: BillingAccount


async def resolve_billing_context(auth: VerifiedSupabaseAuth) -> UserBillingContext:
    user_id = claims_user_id(auth)
    profile = await select_user_profile(auth.access_token, user_id)
    organization_id = profile.get("organization_id") if isinstance(profile, dict) else None
    if not isinstance(organization_id, str) or not organization_id.strip():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    row = await select_billing_account("id", organization_id.strip())
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    profile_email = profile.get("email") if isinstance(profile, dict) else None
    role = profile.get("role") if isinstance(profile, dict) else None
    return UserBillingContext(
        user_id=user_id,
        email=auth.email or (profile_email if isinstance(profile_email, str) else None),
        role=role if isinstance(role, str) else None,
        account=BillingAccount.from_row(row),
    )
