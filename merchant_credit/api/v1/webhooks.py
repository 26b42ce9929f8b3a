"""POST /v1/webhooks/gateway - inbound payment notifications"""

import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.responses import Response

from merchant_credit.api.dependencies import get_gateway_client, get_ledger_store, get_request_id
from merchant_credit.config import settings
from merchant_credit.domain.exceptions import SignatureMismatchError, ValidationError
from merchant_credit.infrastructure.clients.gateway import PaymentGatewayClient
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.database.session import get_db
from merchant_credit.services.payments import PaymentService

router = APIRouter()


@router.post("/webhooks/gateway")
async def gateway_callback(
    request: Request,
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    """
    Verify the signature over the raw body, apply the payment status and
    reply with a signed acknowledgement. Unknown trade numbers get a signed
    404 acknowledgement so the gateway stops retrying.
    """
    request_id = get_request_id(request)
    path = settings.gateway_callback_path
    raw_body = await request.body()

    try:
        transaction = PaymentService(gateway, store).handle_callback(
            path,
            raw_body,
            request.headers.get("X-SIGNATURE"),
            request.headers.get("X-TIMESTAMP"),
        )
        db.commit()

    except SignatureMismatchError:
        logging.warning("Rejected callback with invalid signature", extra={"request_id": request_id})
        return JSONResponse(status_code=401, content={"errCode": "401", "errMsg": "Invalid Signature"})

    except ValidationError as e:
        return JSONResponse(status_code=400, content={"errCode": "400", "errMsg": str(e)})

    except Exception as e:
        db.rollback()
        logging.error(f"Callback processing failed: {e}", extra={"request_id": request_id})
        return JSONResponse(status_code=500, content={"errCode": "500", "errMsg": "Internal Error"})

    if transaction is None:
        ack = gateway.build_signed_callback_response(path, err_code="404")
        return Response(content=ack.content, status_code=404, headers=ack.headers)

    ack = gateway.build_signed_callback_response(path)
    return Response(content=ack.content, status_code=200, headers=ack.headers)
