"""Payment flows: QRIS creation, cash recording, status inquiry and gateway callbacks"""

import json
import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from merchant_credit.config import settings
from merchant_credit.domain.exceptions import GatewayRejectedError, NotFoundError, SignatureMismatchError, ValidationError
from merchant_credit.domain.models import (
    PaymentMethod,
    ProductLine,
    Transaction,
    TransactionMetadata,
    TransactionStatus,
)
from merchant_credit.infrastructure.clients.gateway import GatewayResponse, PaymentGatewayClient
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.observability.metrics import webhook_rejection_counter
from merchant_credit.utils.date_utils import utcnow

QRIS_CREATE_PATH = "/qris/create"
QRIS_QUERY_PATH = "/qris/query"
DEFAULT_PRODUCT_URL = "https://paybaba.id"

# Gateway payment status codes
GATEWAY_PAID = "02"
GATEWAY_FAILED = "09"


def generate_transaction_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=3))
    return f"TXN{int(time.time() * 1000)}{suffix}"


def status_from_gateway(
    current: TransactionStatus,
    gateway_status: Optional[str],
    err_code: Optional[str] = "0",
) -> TransactionStatus:
    """Map a gateway payment status onto the ledger; unknown codes leave it unchanged"""
    if gateway_status == GATEWAY_PAID and str(err_code) == "0":
        return TransactionStatus.SUCCESS
    if gateway_status == GATEWAY_FAILED:
        return TransactionStatus.FAILED
    return current


def product_lines(
    amount: Decimal,
    product_name: Optional[str],
    items: Optional[Sequence[ProductLine]] = None,
) -> List[ProductLine]:
    """Fill defaults for caller items, or a single line covering the whole amount"""
    if not items:
        return [ProductLine(id="ITEM01", name=product_name or "Payment", price=amount, url=DEFAULT_PRODUCT_URL)]
    return [
        ProductLine(
            id=item.id or f"ITEM{index + 1}",
            name=item.name or product_name or "Item",
            price=item.price,
            quantity=item.quantity or 1,
            type=item.type or "General",
            url=item.url or DEFAULT_PRODUCT_URL,
        )
        for index, item in enumerate(items)
    ]


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


@dataclass
class QrisPayment:
    """Pending QRIS transaction plus what the payer needs to complete it"""

    transaction: Transaction
    qr_code: Optional[str]
    qris_url: Optional[str]
    expired_time: Optional[str]


@dataclass
class StatusInquiry:
    transaction: Transaction
    gateway_status: Optional[str] = None


class PaymentService:
    def __init__(self, gateway: PaymentGatewayClient, store: LedgerStore, notify_url: Optional[str] = None):
        self.gateway = gateway
        self.store = store
        self.notify_url = notify_url if notify_url is not None else settings.gateway_notify_url

    async def create_qris(
        self,
        merchant_id: str,
        amount: Decimal,
        description: Optional[str] = None,
        product_name: Optional[str] = None,
        items: Optional[Sequence[ProductLine]] = None,
        now: Optional[datetime] = None,
    ) -> QrisPayment:
        """
        Ask the gateway for a QRIS code and record a Pending transaction.

        Raises:
            GatewayTransportError: Gateway unreachable
            GatewayRejectedError: Gateway answered with a non-zero errCode
        """
        transaction_id = generate_transaction_id()
        lines = product_lines(amount, product_name, items)
        body: Dict[str, Any] = {
            "paymentType": PaymentMethod.QRIS.value,
            "amount": _money(amount),
            "productName": product_name or "Payment Order",
        }
        if self.notify_url:
            body["notifyUrl"] = self.notify_url
        body["productInfo"] = [
            {
                "id": line.id,
                "name": line.name,
                "price": _money(line.price),
                "type": line.type,
                "quantity": line.quantity,
                "url": line.url,
            }
            for line in lines
        ]

        response = await self.gateway.send_request(
            QRIS_CREATE_PATH,
            body,
            request_id=transaction_id,
            merchant_trade_no=transaction_id,
        )
        data = self._require_success(response, "QRIS creation")

        transaction = self.store.transactions.create(
            Transaction(
                transaction_id=transaction_id,
                merchant_id=merchant_id,
                transaction_date=now or utcnow(),
                amount=amount,
                payment_method=PaymentMethod.QRIS,
                status=TransactionStatus.PENDING,
                metadata=TransactionMetadata(
                    description=description,
                    gateway_reference=data.get("platformTradeNo"),
                    qr_string=data.get("qrCode"),
                    product_info=lines,
                ),
            )
        )
        logging.info(
            "QRIS transaction created",
            extra={"merchant_id": merchant_id, "transaction_id": transaction_id},
        )
        return QrisPayment(
            transaction=transaction,
            qr_code=data.get("qrCode"),
            qris_url=data.get("qrisUrl"),
            expired_time=data.get("expiredTime"),
        )

    def record_cash(
        self,
        merchant_id: str,
        amount: Decimal,
        description: Optional[str] = None,
        items: Optional[Sequence[ProductLine]] = None,
        now: Optional[datetime] = None,
    ) -> Transaction:
        """Cash is settled on receipt: Success with settlement at the transaction time"""
        now = now or utcnow()
        transaction = self.store.transactions.create(
            Transaction(
                transaction_id=generate_transaction_id(),
                merchant_id=merchant_id,
                transaction_date=now,
                amount=amount,
                payment_method=PaymentMethod.CASH,
                status=TransactionStatus.SUCCESS,
                settlement_date=now,
                metadata=TransactionMetadata(description=description, product_info=list(items or [])),
            )
        )
        self.store.rebuild_daily_aggregate(merchant_id, self.store.local_day(now))
        return transaction

    async def check_status(
        self,
        merchant_id: str,
        transaction_id: str,
        now: Optional[datetime] = None,
    ) -> StatusInquiry:
        """
        Query the gateway for a QRIS transaction and apply any status change.

        Raises:
            NotFoundError: Unknown transaction for this merchant
            GatewayTransportError: Gateway unreachable
            GatewayRejectedError: Inquiry answered with a non-zero errCode
        """
        transaction = self.store.transactions.get(transaction_id, merchant_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if transaction.payment_method == PaymentMethod.CASH:
            return StatusInquiry(transaction=transaction)

        response = await self.gateway.send_request(
            QRIS_QUERY_PATH,
            {"paymentType": PaymentMethod.QRIS.value},
            merchant_trade_no=transaction.transaction_id,
        )
        data = self._require_success(response, "Status inquiry")
        gateway_status = data.get("status")
        new_status = status_from_gateway(transaction.status, gateway_status)
        return StatusInquiry(
            transaction=self._apply_status(transaction, new_status, now or utcnow()),
            gateway_status=gateway_status,
        )

    def handle_callback(
        self,
        path: str,
        raw_body: Union[bytes, str],
        signature: Optional[str],
        timestamp: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[Transaction]:
        """
        Verify and apply an inbound payment notification.

        Returns the updated transaction, or None when the trade number is
        unknown.

        Raises:
            SignatureMismatchError: Signature did not verify against the raw body
            ValidationError: Verified body is not a JSON object
        """
        if not self.gateway.verify_callback(path, raw_body, signature, timestamp):
            webhook_rejection_counter.inc()
            raise SignatureMismatchError("Invalid callback signature")

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise ValidationError(f"Callback body is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ValidationError("Callback body is not a JSON object")

        trade_no = payload.get("merchantTradeNo")
        transaction = self.store.transactions.get(str(trade_no)) if trade_no else None
        if transaction is None:
            logging.warning("Callback for unknown transaction", extra={"merchant_trade_no": trade_no})
            return None

        new_status = status_from_gateway(transaction.status, payload.get("status"), payload.get("errCode"))
        return self._apply_status(transaction, new_status, now or utcnow())

    def _apply_status(self, transaction: Transaction, new_status: TransactionStatus, now: datetime) -> Transaction:
        if transaction.status == new_status:
            return transaction
        updated = self.store.transactions.update_status(
            transaction.transaction_id,
            new_status,
            settlement_date=now if new_status == TransactionStatus.SUCCESS else None,
        )
        self.store.rebuild_daily_aggregate(
            transaction.merchant_id,
            self.store.local_day(transaction.transaction_date),
        )
        logging.info(
            f"Transaction {transaction.transaction_id} updated to {new_status.value}",
            extra={"merchant_id": transaction.merchant_id},
        )
        return updated

    @staticmethod
    def _require_success(response: GatewayResponse, operation: str) -> Dict[str, Any]:
        if not response.succeeded:
            logging.error(f"{operation} rejected by gateway: {response.error_message}")
            raise GatewayRejectedError(f"{operation} failed: {response.error_message}")
        return response.data
