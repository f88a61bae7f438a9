from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from fastapi import HTTPException, status

from esgreport_api.core.supabase_jwt import VerifiedSupabaseAuth, claims_user_id
from esgreport_api.core.supabase_rest import select_user_profile

PlatformRole = Literal["user", "admin", "super_admin"]

role_rank: dict[str, int] = {
    "user": 1,
    "admin": 2,
    "super_admin": 3,
}


@dataclass(frozen=True)
class PlatformRoleContext:
    user_id: str
    role: PlatformRole


def _normalize_role(value: object) -> PlatformRole:
    if not isinstance(value, str):
        return "user"
    normalized = value.strip().lower()
    if normalized not in role_rank:
        return "user"
    return normalized  # type: ignore[return-value]


async def enforce_platform_role(auth: VerifiedSupabaseAuth, min_role: PlatformRole) -> PlatformRoleContext:
    user_id = claims_user_id(auth)
    profile = await select_user_profile(auth.access_token, user_id)
    role = _normalize_role(profile.get("role") if isinstance(profile, dict) else None)
    if role_rank[role] < role_rank[min_role]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return PlatformRoleContext(user_id=user_id, role=role)

