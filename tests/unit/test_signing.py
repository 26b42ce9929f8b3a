"""Unit tests for canonical strings and RSA signing"""

import base64
import json
import pytest

from merchant_credit.domain.exceptions import ConfigurationError
from merchant_credit.domain.signing import (
    Signer,
    canonicalize,
    minify_json,
    normalize_path,
    sha256_hex,
    to_pem_private,
    to_pem_public,
)

TIMESTAMP = "2024-05-01T10:15:30.123+07:00"
BODY = b'{"merchantId":"010001","requestId":"2024050110153012345","amount":"10000.00"}'


def _flip_bit(data: bytes, index: int) -> bytes:
    mutated = bytearray(data)
    mutated[index] ^= 0x01
    return bytes(mutated)


def test_sign_then_verify_round_trip(merchant_keys):
    signer = merchant_keys.signer
    canonical = canonicalize("POST", "/payment/v2.3/qris/create", BODY, TIMESTAMP)

    assert signer.verify(canonical, signer.sign(canonical)) is True


def test_verify_rejects_any_mutated_signature_bit(merchant_keys):
    """Single-bit changes anywhere in the signature fail without raising"""
    signer = merchant_keys.signer
    canonical = canonicalize("POST", "/payment/v2.3/qris/create", BODY, TIMESTAMP)
    raw = base64.b64decode(signer.sign(canonical))

    for index in (0, len(raw) // 2, len(raw) - 1):
        tampered = base64.b64encode(_flip_bit(raw, index)).decode()
        assert signer.verify(canonical, tampered) is False


def test_verify_rejects_mutated_canonical_string(merchant_keys):
    signer = merchant_keys.signer
    canonical = canonicalize("POST", "/payment/v2.3/qris/create", BODY, TIMESTAMP)
    signature = signer.sign(canonical)

    tampered = _flip_bit(canonical.encode(), len(canonical) - 1).decode()
    assert signer.verify(tampered, signature) is False


def test_verify_returns_false_for_malformed_base64(merchant_keys):
    assert merchant_keys.signer.verify("POST:/x:abc:ts", "not base64 !!!") is False


def test_verify_with_other_key_pair_fails(merchant_keys, gateway_keys):
    canonical = canonicalize("POST", "/callback", BODY, TIMESTAMP)
    signature = gateway_keys.signer.sign(canonical)

    assert merchant_keys.signer.verify(canonical, signature) is False


def test_canonicalize_is_deterministic():
    first = canonicalize("POST", "/payment/v2.3/qris/query", BODY, TIMESTAMP)
    second = canonicalize("POST", "/payment/v2.3/qris/query", BODY, TIMESTAMP)

    assert first == second
    assert first == f"POST:/payment/v2.3/qris/query:{sha256_hex(BODY)}:{TIMESTAMP}"


@pytest.mark.parametrize(
    "method,path,body,timestamp",
    [
        ("GET", "/payment/v2.3/qris/query", BODY, TIMESTAMP),
        ("POST", "/payment/v2.3/qris/create", BODY, TIMESTAMP),
        ("POST", "/payment/v2.3/qris/query", BODY + b" ", TIMESTAMP),
        ("POST", "/payment/v2.3/qris/query", BODY, "2024-05-01T10:15:30.124+07:00"),
    ],
)
def test_canonicalize_changes_with_every_field(method, path, body, timestamp):
    baseline = canonicalize("POST", "/payment/v2.3/qris/query", BODY, TIMESTAMP)
    assert canonicalize(method, path, body, timestamp) != baseline


def test_canonicalize_normalizes_path_and_method():
    assert canonicalize("post", "qris/create", b"", TIMESTAMP) == canonicalize("POST", "/qris/create", b"", TIMESTAMP)
    assert normalize_path("/already") == "/already"


def test_sha256_hex_is_lowercase_and_str_equals_bytes():
    digest = sha256_hex("hello")
    assert digest == digest.lower()
    assert digest == sha256_hex(b"hello")


def test_minify_json_keeps_order_and_unicode():
    payload = {"b": 1, "a": "Rp ü", "nested": {"z": [1, 2]}}
    assert minify_json(payload) == '{"b":1,"a":"Rp ü","nested":{"z":[1,2]}}'.encode("utf-8")


def test_reordered_json_does_not_verify_against_original_signature(gateway_keys):
    """Verification must use the raw received bytes, never a re-serialization"""
    signer = gateway_keys.signer
    raw = b'{"merchantTradeNo":"TXN1","status":"02","errCode":"0"}'
    signature = signer.sign(canonicalize("POST", "/v1/webhooks/gateway", raw, TIMESTAMP))

    assert signer.verify(canonicalize("POST", "/v1/webhooks/gateway", raw, TIMESTAMP), signature) is True

    parsed = json.loads(raw)
    reordered = minify_json({k: parsed[k] for k in reversed(list(parsed))})
    assert reordered != raw
    assert signer.verify(canonicalize("POST", "/v1/webhooks/gateway", reordered, TIMESTAMP), signature) is False


def test_sign_without_private_key_raises(gateway_keys):
    signer = Signer(public_key=gateway_keys.public_pem)
    assert signer.can_verify and not signer.can_sign
    with pytest.raises(ConfigurationError):
        signer.sign("POST:/x:abc:ts")


def test_verify_without_public_key_raises(merchant_keys):
    signer = Signer(private_key=merchant_keys.private_pem)
    with pytest.raises(ConfigurationError):
        signer.verify("POST:/x:abc:ts", "AAAA")


def test_unloadable_key_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        Signer(private_key="definitely-not-a-key")


def test_escaped_newlines_in_keys_are_accepted(merchant_keys):
    escaped_private = merchant_keys.private_pem.replace("\n", "\\n")
    escaped_public = merchant_keys.public_pem.replace("\n", "\\n")

    assert to_pem_private(escaped_private) == merchant_keys.private_pem.strip()
    assert to_pem_public(escaped_public) == merchant_keys.public_pem.strip()
    signer = Signer(escaped_private, escaped_public)
    assert signer.verify("POST:/x:abc:ts", signer.sign("POST:/x:abc:ts")) is True
