"""Credit score endpoints: calculate on demand, latest snapshot, history and batch assessment"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from merchant_credit.api.dependencies import get_explainer, get_ledger_store, get_request_id
from merchant_credit.api.v1.schemas import (
    BatchAssessmentRequest,
    BatchAssessmentResponse,
    CreditScoreHistoryResponse,
    CreditScoreResponse,
)
from merchant_credit.domain.models import InsufficientData
from merchant_credit.infrastructure.clients.explainer import TextExplainer
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.database.session import get_db
from merchant_credit.services.credit_scoring import CreditScoringService

router = APIRouter()


@router.post("/merchants/{merchant_id}/credit-score", response_model=CreditScoreResponse)
async def calculate_credit_score(
    merchant_id: str,
    request: Request,
    db: Session = Depends(get_db),
    store: LedgerStore = Depends(get_ledger_store),
    explainer: TextExplainer = Depends(get_explainer),
):
    """
    Score the merchant over the trailing three months and store the snapshot.

    Returns 422 when the window holds no transactions; a legitimately low
    score is still a 200.
    """
    request_id = get_request_id(request)

    try:
        outcome = await CreditScoringService(store, explainer).calculate(merchant_id, request_id=request_id)
    except Exception as e:
        db.rollback()
        logging.error(f"Credit score calculation failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    if isinstance(outcome, InsufficientData):
        raise HTTPException(status_code=422, detail=outcome.reason)

    db.commit()
    return CreditScoreResponse.from_domain(outcome)


@router.get("/merchants/{merchant_id}/credit-score", response_model=CreditScoreResponse)
def get_latest_credit_score(
    merchant_id: str,
    store: LedgerStore = Depends(get_ledger_store),
):
    """Most recent stored snapshot; 404 when the merchant has never been scored"""
    snapshot = CreditScoringService(store, explainer=None).latest(merchant_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No credit score for merchant {merchant_id}")
    return CreditScoreResponse.from_domain(snapshot)


@router.get("/merchants/{merchant_id}/credit-score/history", response_model=CreditScoreHistoryResponse)
def get_credit_score_history(
    merchant_id: str,
    limit: int = Query(20, ge=1, le=100),
    store: LedgerStore = Depends(get_ledger_store),
):
    """Stored snapshots, newest first; empty for a merchant never scored"""
    snapshots = CreditScoringService(store, explainer=None).history(merchant_id, limit=limit)
    return CreditScoreHistoryResponse.from_domain(merchant_id, snapshots)


@router.post("/credit-scores/batch-assessment", response_model=BatchAssessmentResponse)
def batch_assessment(
    request_body: BatchAssessmentRequest,
    request: Request,
    store: LedgerStore = Depends(get_ledger_store),
):
    """
    Portfolio view over the newest stored score of each merchant.

    Scores are not recalculated here. Band counts, the average score and the
    limit total only cover merchants that have a score.
    """
    assessment = CreditScoringService(store, explainer=None).batch_assessment(request_body.merchant_ids)
    logging.info(
        f"Batch assessment over {assessment.total_merchants} merchants",
        extra={"request_id": get_request_id(request), "unscored": len(assessment.unscored)},
    )
    return BatchAssessmentResponse.from_domain(assessment)
