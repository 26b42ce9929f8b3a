"""Payment gateway HTTP client with RSA-SHA256 signed requests"""

import json
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

import httpx

from merchant_credit.config import Settings, settings
from merchant_credit.domain.exceptions import ConfigurationError, GatewayTransportError, ValidationError
from merchant_credit.domain.signing import Signer, canonicalize, minify_json, normalize_path
from merchant_credit.infrastructure.observability.metrics import (
    gateway_failure_counter,
    gateway_latency_histogram,
)
from merchant_credit.infrastructure.observability.logging import log_gateway_call
from merchant_credit.utils.date_utils import gateway_timestamp

BASE_URLS = {
    "SIT": "https://sit-pay.paylabs.co.id",
    "PROD": "https://pay.paylabs.co.id",
}

CONTENT_TYPE = "application/json;charset=utf-8"
SIGNED_METHOD = "POST"


def generate_request_id(now: datetime | None = None) -> str:
    """
    Local-time YYYYMMDDHHmmss followed by a random number in [11111, 99999].

    Two calls in the same second can collide; callers that need strict
    uniqueness pass their own id.
    """
    now = now or datetime.now()
    return f"{now:%Y%m%d%H%M%S}{random.randint(11111, 99999)}"


@dataclass(frozen=True)
class GatewayCredentials:
    """Process-wide gateway configuration, fixed at startup"""

    merchant_id: Optional[str]
    private_key: Optional[str] = field(default=None, repr=False)
    public_key: Optional[str] = field(default=None, repr=False)
    server: str = "SIT"
    api_version: str = "v2.3"
    timezone: str = "Asia/Jakarta"

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "GatewayCredentials":
        return cls(
            merchant_id=config.gateway_merchant_id,
            private_key=config.gateway_private_key,
            public_key=config.gateway_public_key,
            server=config.gateway_server,
            api_version=config.gateway_api_version.strip("/"),
            timezone=config.gateway_timezone,
        )


@dataclass
class GatewayResponse:
    """Gateway reply: parsed JSON object, or raw text when the body is not JSON"""

    status_code: int
    data: Optional[Dict[str, Any]] = None
    raw: Optional[str] = None

    @property
    def is_parsed(self) -> bool:
        return self.data is not None

    @property
    def succeeded(self) -> bool:
        return self.is_parsed and str(self.data.get("errCode")) == "0"

    @property
    def error_message(self) -> str:
        if not self.is_parsed:
            return f"HTTP {self.status_code}: {self.raw}"
        return str(self.data.get("errCodeDes") or self.data.get("errMsg") or self.data.get("errCode"))


@dataclass
class SignedPayload:
    """Headers, body and the exact body bytes that were signed"""

    headers: Dict[str, str]
    body: Dict[str, Any]
    content: bytes


class PaymentGatewayClient:
    """Client for the external payment gateway signed-request protocol"""

    def __init__(
        self,
        credentials: GatewayCredentials | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials or GatewayCredentials.from_settings()
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport
        self.signer = Signer(self.credentials.private_key, self.credentials.public_key)

    @property
    def base_url(self) -> str:
        return BASE_URLS.get(self.credentials.server, BASE_URLS["SIT"])

    def resolve_path(self, path: str) -> str:
        """Place a relative endpoint under /payment/{version}; full paths pass through"""
        path = normalize_path(path)
        if path.startswith("/payment/"):
            return path
        return f"/payment/{self.credentials.api_version}{path}"

    def _require_merchant_id(self) -> str:
        if not self.credentials.merchant_id:
            raise ConfigurationError("Gateway merchant id is not configured")
        return self.credentials.merchant_id

    def build_payload(
        self,
        body: Mapping[str, Any],
        request_id: str,
        merchant_trade_no: str,
    ) -> Dict[str, Any]:
        """
        Identity fields first, then caller fields.

        Raises:
            ValidationError: Caller body tries to change an identity field
        """
        identity = {
            "merchantId": self._require_merchant_id(),
            "requestId": request_id,
            "merchantTradeNo": merchant_trade_no,
        }
        for key, value in identity.items():
            if key in body and body[key] != value:
                raise ValidationError(
                    f"Body field {key!r} conflicts with the request identity; "
                    "pass request_id / merchant_trade_no explicitly instead"
                )
        payload = dict(identity)
        payload.update((k, v) for k, v in body.items() if k not in identity)
        return payload

    def sign_payload(self, path: str, payload: Dict[str, Any], timestamp: str, request_id: str) -> SignedPayload:
        content = minify_json(payload)
        canonical = canonicalize(SIGNED_METHOD, path, content, timestamp)
        logging.debug("Gateway canonical string", extra={"canonical": canonical})
        headers = {
            "X-TIMESTAMP": timestamp,
            "X-SIGNATURE": self.signer.sign(canonical),
            "X-PARTNER-ID": self._require_merchant_id(),
            "X-REQUEST-ID": request_id,
            "Content-Type": CONTENT_TYPE,
        }
        return SignedPayload(headers=headers, body=payload, content=content)

    async def send_request(
        self,
        path: str,
        body: Mapping[str, Any] | None = None,
        *,
        request_id: str | None = None,
        merchant_trade_no: str | None = None,
        timestamp: str | None = None,
    ) -> GatewayResponse:
        """
        Sign and POST a request to the gateway.

        Raises:
            ConfigurationError: Missing merchant id or private key
            ValidationError: Body overrides an identity field
            GatewayTransportError: Network failure (never retried here)
        """
        generated = generate_request_id()
        request_id = request_id or generated
        merchant_trade_no = merchant_trade_no or generated
        timestamp = timestamp or gateway_timestamp(self.credentials.timezone)

        resolved = self.resolve_path(path)
        payload = self.build_payload(body or {}, request_id, merchant_trade_no)
        signed = self.sign_payload(resolved, payload, timestamp, request_id)
        url = f"{self.base_url}{resolved}"

        start_time = time.time()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(url, content=signed.content, headers=signed.headers)
            except httpx.TimeoutException as e:
                gateway_failure_counter.inc()
                raise GatewayTransportError(f"Gateway timeout after {self.timeout}s") from e
            except httpx.RequestError as e:
                gateway_failure_counter.inc()
                raise GatewayTransportError(f"Gateway request failed: {e}") from e
            finally:
                gateway_latency_histogram.observe(time.time() - start_time)

        log_gateway_call(resolved, request_id, response.status_code, (time.time() - start_time) * 1000)
        return parse_response(response)

    def verify_callback(
        self,
        path: str,
        raw_body: Union[bytes, str],
        signature_header: str | None,
        timestamp_header: str | None,
    ) -> bool:
        """
        Verify an inbound callback against its raw body.

        Any verification problem rejects (False); a missing public key is an
        operator error and raises ConfigurationError.
        """
        if not self.signer.can_verify:
            raise ConfigurationError("Gateway public key is not configured")
        if not signature_header or not timestamp_header:
            return False
        try:
            canonical = canonicalize(SIGNED_METHOD, path, raw_body, timestamp_header)
            return self.signer.verify(canonical, signature_header)
        except ConfigurationError:
            raise
        except (ValueError, TypeError) as e:
            logging.warning(f"Callback verification error: {e}")
            return False

    def build_signed_callback_response(self, path: str, err_code: str = "0") -> SignedPayload:
        """Signed acknowledgement body for an inbound gateway callback"""
        request_id = generate_request_id()
        timestamp = gateway_timestamp(self.credentials.timezone)
        payload = {
            "merchantId": self._require_merchant_id(),
            "requestId": request_id,
            "errCode": err_code,
        }
        return self.sign_payload(normalize_path(path), payload, timestamp, request_id)


def parse_response(response: httpx.Response) -> GatewayResponse:
    text = response.text
    try:
        data = json.loads(text)
    except ValueError:
        return GatewayResponse(status_code=response.status_code, raw=text)
    if not isinstance(data, dict):
        return GatewayResponse(status_code=response.status_code, raw=text)
    return GatewayResponse(status_code=response.status_code, data=data)
