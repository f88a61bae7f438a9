import pytest

from esgreport_api.billing import signature
from esgreport_api.billing.signature import (
    build_signature_header,
    compute_signature,
    parse_signature_header,
    verify_signature,
)

SECRET = "whsec_test_secret"
BODY = b'{"id":"evt_1","type":"invoice.paid","data":{"object":{}}}'
TIMESTAMP = 1_700_000_000


@pytest.mark.parametrize(
    ("timestamp", "body", "secret"),
    [
        (TIMESTAMP, BODY, SECRET),
        (0, b"", "s"),
        ("1700000123", "{\"amount\": \"£19.99\"}".encode("utf-8"), "another-secret"),
    ],
)
def test_header_built_from_hmac_verifies(timestamp, body: bytes, secret: str) -> None:
    header = build_signature_header(timestamp, body, secret)
    assert verify_signature(body, header, secret) is True


def test_signature_matches_reference_hmac() -> None:
    import hashlib
    import hmac

    expected = hmac.new(SECRET.encode(), f"{TIMESTAMP}.".encode() + BODY, hashlib.sha256).hexdigest()
    assert compute_signature(TIMESTAMP, BODY, SECRET) == expected


def test_flipping_any_body_character_fails_verification() -> None:
    header = build_signature_header(TIMESTAMP, BODY, SECRET)
    for index in range(len(BODY)):
        tampered = bytearray(BODY)
        tampered[index] = tampered[index] ^ 0x01
        assert verify_signature(bytes(tampered), header, SECRET) is False


def test_wrong_secret_fails() -> None:
    header = build_signature_header(TIMESTAMP, BODY, SECRET)
    assert verify_signature(BODY, header, "whsec_other") is False


def test_any_v1_signature_may_match_during_secret_rotation() -> None:
    valid = compute_signature(TIMESTAMP, BODY, SECRET)
    header = f"t={TIMESTAMP},v1={'0' * 64},v0=legacy,v1={valid}"
    assert verify_signature(BODY, header, SECRET) is True


def test_stale_timestamp_is_not_rejected() -> None:
    header = build_signature_header(1, BODY, SECRET)
    assert verify_signature(BODY, header, SECRET) is True


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "v1=abc",
        f"t={TIMESTAMP}",
        f"t={TIMESTAMP},v0=abc",
        f"t={TIMESTAMP},t={TIMESTAMP},v1=abc",
        "t=,v1=abc",
        "garbage",
    ],
)
def test_malformed_headers_fail_without_computing_hmac(monkeypatch, header) -> None:
    def fail_compute(*args, **kwargs):
        raise AssertionError("HMAC must not be computed for a malformed header")

    monkeypatch.setattr(signature, "compute_signature", fail_compute)
    assert verify_signature(BODY, header, SECRET) is False


def test_parse_signature_header_collects_v1_entries() -> None:
    parsed = parse_signature_header("t=123, v1=aaa ,v1=bbb,v0=ccc")
    assert parsed is not None
    assert parsed.timestamp == "123"
    assert parsed.signatures == ("aaa", "bbb")


def test_non_ascii_signature_value_is_rejected() -> None:
    header = f"t={TIMESTAMP},v1=éé"
    assert verify_signature(BODY, header, SECRET) is False
