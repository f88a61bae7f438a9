"""Stripe webhook signature verification (``v1`` scheme).

The ``stripe-signature`` header looks like ``t=<unix ts>,v1=<hex>[,v1=<hex>...]``.
Stripe signs ``"<t>.<raw body>"`` with HMAC-SHA256 and the endpoint secret; several
``v1`` entries appear while a secret is being rolled, and any one matching is enough.

No tolerance window is applied to ``t``.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass

SIGNATURE_HEADER = "stripe-signature"
_TIMESTAMP_KEY = "t"
_SIGNATURE_SCHEME = "v1"


@dataclass(frozen=True)
class SignatureHeader:
    timestamp: str
    signatures: tuple[str, ...]


def parse_signature_header(header: str | None) -> SignatureHeader | None:
    """Split the header into its timestamp and ``v1`` signatures.

    Returns None unless there is exactly one ``t`` entry and at least one ``v1``.
    """
    if not header:
        return None

    timestamps: list[str] = []
    signatures: list[str] = []
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == _TIMESTAMP_KEY:
            timestamps.append(value)
        elif key == _SIGNATURE_SCHEME:
            signatures.append(value)

    if len(timestamps) != 1 or not timestamps[0] or not signatures:
        return None
    return SignatureHeader(timestamp=timestamps[0], signatures=tuple(signatures))


def compute_signature(timestamp: str | int, raw_body: bytes, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(timestamp: str | int, raw_body: bytes, secret: str) -> str:
    return f"t={timestamp},v1={compute_signature(timestamp, raw_body, secret)}"


def verify_signature(raw_body: bytes, header: str | None, secret: str) -> bool:
    parsed = parse_signature_header(header)
    if parsed is None:
        return False

    expected = compute_signature(parsed.timestamp, raw_body, secret).encode("ascii")
    return any(
        hmac.compare_digest(expected, candidate.encode("utf-8")) for candidate in parsed.signatures
    )
