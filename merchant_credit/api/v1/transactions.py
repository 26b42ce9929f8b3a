"""Merchant transaction endpoints: QRIS / cash creation, listing and status inquiry"""

import logging
import math
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from merchant_credit.api.dependencies import get_gateway_client, get_ledger_store, get_request_id
from merchant_credit.api.v1.schemas import (
    PaginationSchema,
    TransactionCreateRequest,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatusResponse,
)
from merchant_credit.domain.exceptions import (
    ConfigurationError,
    GatewayRejectedError,
    GatewayTransportError,
    NotFoundError,
    ValidationError,
)
from merchant_credit.infrastructure.clients.gateway import PaymentGatewayClient
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.database.session import get_db
from merchant_credit.services.payments import PaymentService

router = APIRouter()


@router.post("/merchants/{merchant_id}/transactions", response_model=TransactionResponse, status_code=201)
async def create_transaction(
    merchant_id: str,
    request_body: TransactionCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    """
    Create a transaction.

    QRIS asks the gateway for a payment code and stays Pending until the
    callback arrives; CASH is recorded as Success immediately.
    """
    request_id = get_request_id(request)
    service = PaymentService(gateway, store)
    items = [item.to_domain() for item in request_body.product_info]

    try:
        if request_body.type == "QRIS":
            payment = await service.create_qris(
                merchant_id,
                request_body.amount,
                description=request_body.description,
                product_name=request_body.product_name,
                items=items,
            )
            response = TransactionResponse.from_domain(
                payment.transaction,
                qr_code=payment.qr_code,
                qris_url=payment.qris_url,
                expired_time=payment.expired_time,
            )
        else:
            transaction = service.record_cash(
                merchant_id,
                request_body.amount,
                description=request_body.description,
                items=items,
            )
            response = TransactionResponse.from_domain(transaction)

        db.commit()
        return response

    except GatewayTransportError as e:
        db.rollback()
        logging.error(f"Gateway unavailable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Payment gateway unavailable")

    except GatewayRejectedError as e:
        db.rollback()
        logging.warning(f"Gateway rejected request: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))

    except ValidationError as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    except ConfigurationError as e:
        db.rollback()
        logging.error(f"Gateway misconfigured: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Payment gateway is not configured")

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/merchants/{merchant_id}/transactions", response_model=TransactionListResponse)
def list_transactions(
    merchant_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: LedgerStore = Depends(get_ledger_store),
):
    """Merchant's transactions, newest first, one page at a time"""
    total, transactions = store.transactions.list_page(merchant_id, limit=limit, offset=(page - 1) * limit)

    return TransactionListResponse(
        merchant_id=merchant_id,
        transactions=[TransactionResponse.from_domain(t) for t in transactions],
        pagination=PaginationSchema(total=total, page=page, limit=limit, pages=math.ceil(total / limit)),
    )


@router.get("/merchants/{merchant_id}/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    merchant_id: str,
    transaction_id: str,
    store: LedgerStore = Depends(get_ledger_store),
):
    transaction = store.transactions.get(transaction_id, merchant_id=merchant_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return TransactionResponse.from_domain(transaction)


@router.get(
    "/merchants/{merchant_id}/transactions/{transaction_id}/status",
    response_model=TransactionStatusResponse,
)
async def check_transaction_status(
    merchant_id: str,
    transaction_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    """Force a gateway inquiry for a QRIS transaction and apply any status change"""
    request_id = get_request_id(request)

    try:
        inquiry = await PaymentService(gateway, store).check_status(merchant_id, transaction_id)
        db.commit()
        return TransactionStatusResponse(
            transaction_id=inquiry.transaction.transaction_id,
            status=inquiry.transaction.status.value,
            gateway_status=inquiry.gateway_status,
        )

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except GatewayTransportError as e:
        db.rollback()
        logging.error(f"Gateway unavailable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Payment gateway unavailable")

    except GatewayRejectedError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")
