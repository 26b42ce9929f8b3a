"""Unit tests for the signed payment gateway client"""

import json
import re
import pytest
from datetime import datetime

import httpx

from merchant_credit.domain.exceptions import ConfigurationError, GatewayTransportError, ValidationError
from merchant_credit.domain.signing import canonicalize, sha256_hex
from merchant_credit.infrastructure.clients.gateway import (
    CONTENT_TYPE,
    GatewayCredentials,
    PaymentGatewayClient,
    generate_request_id,
)

TIMESTAMP = "2024-05-01T10:15:30.123+07:00"


def test_generate_request_id_format():
    request_id = generate_request_id(datetime(2024, 5, 1, 10, 15, 30))

    assert request_id.startswith("20240501101530")
    assert len(request_id) == 19
    assert 11111 <= int(request_id[14:]) <= 99999


def test_resolve_path_places_relative_paths_under_version(gateway_client):
    assert gateway_client.resolve_path("/qris/create") == "/payment/v2.3/qris/create"
    assert gateway_client.resolve_path("qris/query") == "/payment/v2.3/qris/query"
    assert gateway_client.resolve_path("/payment/v2.1/qris/create") == "/payment/v2.1/qris/create"


def test_base_url_follows_server(credentials):
    prod = GatewayCredentials(merchant_id="1", server="PROD")
    assert PaymentGatewayClient(credentials=prod).base_url == "https://pay.paylabs.co.id"
    assert PaymentGatewayClient(credentials=credentials).base_url == "https://sit-pay.paylabs.co.id"


def test_build_payload_puts_identity_first(gateway_client):
    payload = gateway_client.build_payload({"amount": "10000.00", "paymentType": "QRIS"}, "REQ1", "TRADE1")

    assert list(payload) == ["merchantId", "requestId", "merchantTradeNo", "amount", "paymentType"]
    assert payload["merchantId"] == "010001"


def test_build_payload_rejects_conflicting_identity_field(gateway_client):
    with pytest.raises(ValidationError):
        gateway_client.build_payload({"requestId": "OTHER"}, "REQ1", "TRADE1")


def test_build_payload_tolerates_matching_identity_field(gateway_client):
    payload = gateway_client.build_payload({"merchantTradeNo": "TRADE1", "x": 1}, "REQ1", "TRADE1")
    assert list(payload) == ["merchantId", "requestId", "merchantTradeNo", "x"]


def test_missing_merchant_id_raises_configuration_error(merchant_keys):
    client = PaymentGatewayClient(credentials=GatewayCredentials(merchant_id=None, private_key=merchant_keys.private_pem))
    with pytest.raises(ConfigurationError):
        client.build_payload({}, "REQ1", "TRADE1")


async def test_send_request_signs_exact_body_bytes(gateway_client, fake_gateway, merchant_keys):
    fake_gateway.reply = {"errCode": "0", "qrCode": "000201"}

    response = await gateway_client.send_request(
        "/qris/create",
        {"paymentType": "QRIS", "amount": "10000.00"},
        request_id="REQ1",
        merchant_trade_no="TRADE1",
        timestamp=TIMESTAMP,
    )

    assert response.succeeded
    assert response.data["qrCode"] == "000201"

    sent = fake_gateway.requests[-1]
    assert str(sent.url) == "https://sit-pay.paylabs.co.id/payment/v2.3/qris/create"
    assert sent.headers["X-TIMESTAMP"] == TIMESTAMP
    assert sent.headers["X-PARTNER-ID"] == "010001"
    assert sent.headers["X-REQUEST-ID"] == "REQ1"
    assert sent.headers["Content-Type"] == CONTENT_TYPE
    assert b" " not in sent.content

    canonical = f"POST:/payment/v2.3/qris/create:{sha256_hex(sent.content)}:{TIMESTAMP}"
    assert canonical == canonicalize("POST", "/payment/v2.3/qris/create", sent.content, TIMESTAMP)
    assert merchant_keys.signer.verify(canonical, sent.headers["X-SIGNATURE"]) is True


async def test_send_request_generates_identity_and_timestamp(gateway_client, fake_gateway):
    await gateway_client.send_request("/qris/query", {"paymentType": "QRIS"})

    body = fake_gateway.last_body
    assert re.fullmatch(r"\d{19}", body["requestId"])
    assert body["merchantTradeNo"] == body["requestId"]
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}\+07:00", fake_gateway.requests[-1].headers["X-TIMESTAMP"])


async def test_non_json_reply_is_returned_raw(gateway_client, fake_gateway):
    fake_gateway.status_code = 502
    fake_gateway.raw_reply = "<html>Bad Gateway</html>"

    response = await gateway_client.send_request("/qris/create", {})

    assert not response.is_parsed
    assert not response.succeeded
    assert response.raw == "<html>Bad Gateway</html>"
    assert "502" in response.error_message


async def test_gateway_error_code_is_not_success(gateway_client, fake_gateway):
    fake_gateway.reply = {"errCode": "paramInvalid", "errCodeDes": "Invalid amount"}

    response = await gateway_client.send_request("/qris/create", {})

    assert response.is_parsed
    assert not response.succeeded
    assert response.error_message == "Invalid amount"


async def test_transport_failure_raises(gateway_client, fake_gateway):
    fake_gateway.error = httpx.ConnectError("connection refused")

    with pytest.raises(GatewayTransportError):
        await gateway_client.send_request("/qris/create", {})
    assert len(fake_gateway.requests) == 1


async def test_timeout_raises_transport_error(gateway_client, fake_gateway):
    fake_gateway.error = httpx.ReadTimeout("too slow")

    with pytest.raises(GatewayTransportError):
        await gateway_client.send_request("/qris/create", {})


async def test_send_without_private_key_raises(credentials, fake_gateway):
    client = PaymentGatewayClient(
        credentials=GatewayCredentials(merchant_id="010001", public_key=credentials.public_key),
        transport=fake_gateway.transport,
    )
    with pytest.raises(ConfigurationError):
        await client.send_request("/qris/create", {})
    assert fake_gateway.requests == []


def test_verify_callback_uses_raw_body(gateway_client, gateway_keys):
    raw = b'{"merchantTradeNo":"TXN1","status":"02","errCode":"0"}'
    signature = gateway_keys.signer.sign(canonicalize("POST", "/v1/webhooks/gateway", raw, TIMESTAMP))

    assert gateway_client.verify_callback("/v1/webhooks/gateway", raw, signature, TIMESTAMP) is True
    assert gateway_client.verify_callback("/v1/webhooks/gateway", raw + b"\n", signature, TIMESTAMP) is False
    assert gateway_client.verify_callback("/v1/webhooks/other", raw, signature, TIMESTAMP) is False


def test_verify_callback_missing_headers_is_false(gateway_client):
    assert gateway_client.verify_callback("/cb", b"{}", None, TIMESTAMP) is False
    assert gateway_client.verify_callback("/cb", b"{}", "c2ln", None) is False


def test_verify_callback_without_public_key_raises(merchant_keys):
    client = PaymentGatewayClient(
        credentials=GatewayCredentials(merchant_id="010001", private_key=merchant_keys.private_pem)
    )
    with pytest.raises(ConfigurationError):
        client.verify_callback("/cb", b"{}", "c2ln", TIMESTAMP)


def test_signed_callback_response_is_verifiable(gateway_client, merchant_keys):
    ack = gateway_client.build_signed_callback_response("/v1/webhooks/gateway", err_code="404")

    assert json.loads(ack.content) == ack.body
    assert ack.body["errCode"] == "404"
    assert ack.body["merchantId"] == "010001"
    canonical = canonicalize("POST", "/v1/webhooks/gateway", ack.content, ack.headers["X-TIMESTAMP"])
    assert merchant_keys.signer.verify(canonical, ack.headers["X-SIGNATURE"]) is True
