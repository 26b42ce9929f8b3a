"""Early-warning alert endpoints"""

import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from merchant_credit.api.dependencies import get_explainer, get_ledger_store, get_request_id
from merchant_credit.api.v1.schemas import AlertListResponse, AlertResponse, ResolveAlertRequest
from merchant_credit.domain.exceptions import NotFoundError
from merchant_credit.infrastructure.clients.explainer import TextExplainer
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.database.session import get_db
from merchant_credit.services.early_warning import EarlyWarningService

router = APIRouter()


@router.post("/merchants/{merchant_id}/alerts/detect", response_model=AlertListResponse)
async def detect_alerts(
    merchant_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
    explainer: TextExplainer = Depends(get_explainer),
):
    """Run all detectors now and return the alerts raised by this run"""
    request_id = get_request_id(request)

    try:
        alerts = await EarlyWarningService(store, explainer).detect(merchant_id)
        db.commit()
    except Exception as e:
        db.rollback()
        logging.error(f"Early warning detection failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return AlertListResponse(merchant_id=merchant_id, alerts=[AlertResponse.from_domain(a) for a in alerts])


@router.get("/merchants/{merchant_id}/alerts", response_model=AlertListResponse)
def list_active_alerts(
    merchant_id: str,
    store: LedgerStore = Depends(get_ledger_store),
):
    """Unresolved alerts, newest first"""
    alerts = EarlyWarningService(store, explainer=None).active_alerts(merchant_id)
    return AlertListResponse(merchant_id=merchant_id, alerts=[AlertResponse.from_domain(a) for a in alerts])


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
def resolve_alert(
    alert_id: uuid.UUID,
    request_body: Optional[ResolveAlertRequest] = Body(None),
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
):
    resolved_by = request_body.resolved_by if request_body else None
    try:
        alert = EarlyWarningService(store, explainer=None).resolve(alert_id, resolved_by)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    db.commit()
    return AlertResponse.from_domain(alert)
