from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import jwt
from fastapi import Header, HTTPException, status
from jwt import PyJWKClient
from jwt.exceptions import InvalidTokenError, PyJWKClientError

from esgreport_api.core.settings import get_settings

SUPABASE_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class VerifiedSupabaseAuth:
    access_token: str
    claims: dict[str, Any]

    @property
    def email(self) -> str | None:
        value = self.claims.get("email")
        return value.strip() if isinstance(value, str) and value.strip() else None


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


@lru_cache
def _jwks_client(jwks_url: str) -> PyJWKClient:
    return PyJWKClient(jwks_url, cache_keys=True)


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized()
    return token.strip()


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()

    try:
        signing_key = _jwks_client(settings.SUPABASE_JWKS_URL).get_signing_key_from_jwt(token).key
        decoded = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256", "ES256"],
            issuer=settings.SUPABASE_ISSUER,
            audience=SUPABASE_AUDIENCE,
        )
    except (InvalidTokenError, PyJWKClientError, ValueError):
        raise _unauthorized() from None

    if not isinstance(decoded, dict):
        raise _unauthorized()
    return decoded


def claims_user_id(auth: VerifiedSupabaseAuth) -> str:
    sub = auth.claims.get("sub")
    if not isinstance(sub, str) or not sub.strip():
        raise _unauthorized()
    return sub.strip()


def verify_supabase_auth(authorization: str | None = Header(default=None)) -> VerifiedSupabaseAuth:
    token = _bearer_token(authorization)
    return VerifiedSupabaseAuth(access_token=token, claims=decode_access_token(token))
