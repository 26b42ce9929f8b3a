"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from merchant_credit.domain.models import CreditScoreSnapshot, EarlyWarningAlert, ProductLine, RiskBand, Transaction
from merchant_credit.services.credit_scoring import PortfolioAssessment


class ProductItem(BaseModel):
    """Single line item for a QRIS payment"""

    id: Optional[str] = None
    name: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    type: str = "General"
    url: Optional[str] = None

    def to_domain(self) -> ProductLine:
        return ProductLine(
            id=self.id or "",
            name=self.name or "",
            price=self.price,
            quantity=self.quantity,
            type=self.type,
            url=self.url,
        )


class TransactionCreateRequest(BaseModel):
    """Request body for POST /v1/merchants/{merchant_id}/transactions"""

    type: Literal["QRIS", "CASH"]
    amount: Decimal = Field(..., ge=1000, description="Amount in rupiah, minimum 1000")
    description: Optional[str] = None
    product_name: Optional[str] = None
    product_info: List[ProductItem] = Field(default_factory=list)


class TransactionResponse(BaseModel):
    transaction_id: str
    merchant_id: str
    amount: str
    payment_method: str
    status: str
    transaction_date: str
    settlement_date: Optional[str] = None
    qr_code: Optional[str] = None
    qris_url: Optional[str] = None
    expired_time: Optional[str] = None

    @classmethod
    def from_domain(cls, txn: Transaction, **extra) -> "TransactionResponse":
        return cls(
            transaction_id=txn.transaction_id,
            merchant_id=txn.merchant_id,
            amount=f"{txn.amount:.2f}",
            payment_method=txn.payment_method.value,
            status=txn.status.value,
            transaction_date=txn.transaction_date.isoformat(),
            settlement_date=txn.settlement_date.isoformat() if txn.settlement_date else None,
            **extra,
        )


class PaginationSchema(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class TransactionListResponse(BaseModel):
    """Response for GET /v1/merchants/{merchant_id}/transactions"""

    merchant_id: str
    transactions: List[TransactionResponse]
    pagination: PaginationSchema


class TransactionStatusResponse(BaseModel):
    """Response for GET .../transactions/{transaction_id}/status"""

    transaction_id: str
    status: str
    gateway_status: Optional[str] = None


class ComponentScoresSchema(BaseModel):
    transaction_volume: float
    revenue_consistency: float
    growth_trend: float
    refund_rate: float
    settlement_time: float


class ScoreMetricsSchema(BaseModel):
    avg_monthly_revenue: float
    revenue_volatility: float
    growth_percentage_mom: float
    refund_rate_percentage: float
    avg_settlement_days: Optional[float] = None
    transaction_count: int


class CreditScoreResponse(BaseModel):
    """Response for the credit-score endpoints"""

    id: str
    merchant_id: str
    calculated_at: str
    credit_score: int
    risk_band: str
    estimated_min_limit: float
    estimated_max_limit: float
    components: ComponentScoresSchema
    metrics: ScoreMetricsSchema
    weights: Dict[str, float]
    explanation: Optional[str] = None
    recommendation: Optional[str] = None

    @classmethod
    def from_domain(cls, snapshot: CreditScoreSnapshot) -> "CreditScoreResponse":
        result = snapshot.result
        return cls(
            id=str(snapshot.id),
            merchant_id=snapshot.merchant_id,
            calculated_at=snapshot.calculated_at.isoformat(),
            credit_score=result.credit_score,
            risk_band=result.risk_band.value,
            estimated_min_limit=result.estimated_min_limit,
            estimated_max_limit=result.estimated_max_limit,
            components=ComponentScoresSchema(**vars(result.components)),
            metrics=ScoreMetricsSchema(**vars(result.metrics)),
            weights=result.weights,
            explanation=snapshot.explanation,
            recommendation=snapshot.recommendation,
        )


class ScoreHistoryItem(BaseModel):
    id: str
    calculated_at: str
    credit_score: int
    risk_band: str
    estimated_max_limit: float


class CreditScoreHistoryResponse(BaseModel):
    merchant_id: str
    scores: List[ScoreHistoryItem]

    @classmethod
    def from_domain(cls, merchant_id: str, snapshots: List[CreditScoreSnapshot]) -> "CreditScoreHistoryResponse":
        return cls(
            merchant_id=merchant_id,
            scores=[
                ScoreHistoryItem(
                    id=str(s.id),
                    calculated_at=s.calculated_at.isoformat(),
                    credit_score=s.credit_score,
                    risk_band=s.risk_band.value,
                    estimated_max_limit=s.result.estimated_max_limit,
                )
                for s in snapshots
            ],
        )


class BatchAssessmentRequest(BaseModel):
    """Request body for POST /v1/credit-scores/batch-assessment"""

    merchant_ids: List[str] = Field(..., min_length=1, max_length=500)


class AssessmentDetail(BaseModel):
    merchant_id: str
    credit_score: int
    risk_band: str
    estimated_min_limit: float
    estimated_max_limit: float
    calculated_at: str


class AssessmentSummary(BaseModel):
    avg_credit_score: Optional[float] = None
    low_risk: int
    medium_risk: int
    high_risk: int
    total_max_limit: float


class BatchAssessmentResponse(BaseModel):
    total_merchants: int
    assessed_at: str
    summary: AssessmentSummary
    details: List[AssessmentDetail]
    unscored: List[str]

    @classmethod
    def from_domain(cls, assessment: PortfolioAssessment) -> "BatchAssessmentResponse":
        avg = assessment.avg_credit_score
        return cls(
            total_merchants=assessment.total_merchants,
            assessed_at=assessment.assessed_at.isoformat(),
            summary=AssessmentSummary(
                avg_credit_score=round(avg, 2) if avg is not None else None,
                low_risk=assessment.band_count(RiskBand.LOW),
                medium_risk=assessment.band_count(RiskBand.MEDIUM),
                high_risk=assessment.band_count(RiskBand.HIGH),
                total_max_limit=assessment.total_max_limit,
            ),
            details=[
                AssessmentDetail(
                    merchant_id=s.merchant_id,
                    credit_score=s.credit_score,
                    risk_band=s.risk_band.value,
                    estimated_min_limit=s.result.estimated_min_limit,
                    estimated_max_limit=s.result.estimated_max_limit,
                    calculated_at=s.calculated_at.isoformat(),
                )
                for s in assessment.snapshots
            ],
            unscored=assessment.unscored,
        )


class AlertResponse(BaseModel):
    id: str
    merchant_id: str
    alert_type: str
    severity: str
    metric_name: str
    metric_value: float
    threshold_value: float
    deviation_percentage: float
    detected_at: str
    analysis: Optional[str] = None
    is_resolved: bool
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None

    @classmethod
    def from_domain(cls, alert: EarlyWarningAlert) -> "AlertResponse":
        return cls(
            id=str(alert.id),
            merchant_id=alert.merchant_id,
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            metric_name=alert.metric_name,
            metric_value=alert.metric_value,
            threshold_value=alert.threshold_value,
            deviation_percentage=alert.deviation_percentage,
            detected_at=alert.detected_at.isoformat(),
            analysis=alert.analysis,
            is_resolved=alert.is_resolved,
            resolved_at=alert.resolved_at.isoformat() if alert.resolved_at else None,
            resolved_by=alert.resolved_by,
        )


class AlertListResponse(BaseModel):
    """Response for alert listing and detection"""

    merchant_id: str
    alerts: List[AlertResponse]


class ResolveAlertRequest(BaseModel):
    resolved_by: Optional[str] = Field(None, max_length=100)
