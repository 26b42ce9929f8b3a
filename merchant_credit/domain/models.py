"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from merchant_credit.domain.exceptions import ValidationError


class PaymentMethod(str, Enum):
    QRIS = "QRIS"
    VIRTUAL_ACCOUNT = "Virtual Account"
    E_WALLET = "E-Wallet"
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    CASH = "CASH"


class TransactionStatus(str, Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class RefundStatus(str, Enum):
    NONE = "None"
    REQUESTED = "Requested"
    PROCESSED = "Processed"
    REJECTED = "Rejected"


class RiskBand(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Severity(str, Enum):
    CRITICAL = "Critical"
    MEDIUM = "Medium"
    LOW = "Low"


class AlertType(str, Enum):
    REVENUE_DROP = "Revenue Drop"
    REFUND_SPIKE = "Refund Spike"
    SETTLEMENT_DELAY = "Settlement Delay"
    TRANSACTION_DROP = "Transaction Drop"
    SCORE_DROP = "Score Drop"


@dataclass
class ProductLine:
    """Single line item attached to a payment"""

    id: str
    name: str
    price: Decimal
    quantity: int = 1
    type: str = "General"
    url: Optional[str] = None


@dataclass
class TransactionMetadata:
    """Free-form transaction details; every field is optional"""

    description: Optional[str] = None
    gateway_reference: Optional[str] = None
    qr_string: Optional[str] = None
    product_info: List[ProductLine] = field(default_factory=list)


@dataclass
class Transaction:
    """Merchant payment transaction"""

    transaction_id: str
    merchant_id: str
    transaction_date: datetime
    amount: Decimal
    payment_method: PaymentMethod
    status: TransactionStatus = TransactionStatus.PENDING
    refund_status: RefundStatus = RefundStatus.NONE
    settlement_date: Optional[datetime] = None
    metadata: TransactionMetadata = field(default_factory=TransactionMetadata)

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValidationError(f"Transaction {self.transaction_id} has negative amount {self.amount}")
        try:
            self.payment_method = PaymentMethod(self.payment_method)
            self.status = TransactionStatus(self.status)
            self.refund_status = RefundStatus(self.refund_status)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    @property
    def is_refunded(self) -> bool:
        return self.status == TransactionStatus.REFUNDED or self.refund_status == RefundStatus.PROCESSED

    @property
    def is_settled(self) -> bool:
        return self.settlement_date is not None


@dataclass
class DailyAggregate:
    """Per-merchant, per-day rollup of transactions"""

    merchant_id: str
    day: date
    total_amount: Decimal = Decimal("0")
    transaction_count: int = 0
    successful_count: int = 0
    failed_count: int = 0
    refunded_count: int = 0
    refund_amount: Decimal = Decimal("0")


@dataclass
class WindowStats:
    """Totals over a date window"""

    total_amount: Decimal
    count: int
    success_count: int
    fail_count: int
    refund_count: int


@dataclass
class ScoringInputs:
    """Everything the credit scoring engine reads"""

    stats: WindowStats
    daily_revenues: List[float]
    settlement_days: List[float]
    current_month_revenue: float
    previous_month_revenue: float
    window_months: int = 3


@dataclass
class ComponentScores:
    """Five component scores, each in [0, 100]"""

    transaction_volume: float
    revenue_consistency: float
    growth_trend: float
    refund_rate: float
    settlement_time: float


@dataclass
class ScoreMetrics:
    """Raw metrics the component scores are derived from"""

    avg_monthly_revenue: float
    revenue_volatility: float
    growth_percentage_mom: float
    refund_rate_percentage: float
    avg_settlement_days: Optional[float]
    transaction_count: int


@dataclass
class CreditScoreResult:
    """Output of the scoring engine"""

    credit_score: int
    risk_band: RiskBand
    estimated_min_limit: float
    estimated_max_limit: float
    components: ComponentScores
    metrics: ScoreMetrics
    weights: Dict[str, float]


@dataclass(frozen=True)
class InsufficientData:
    """Explicit 'no result' marker; distinct from a score of 0"""

    reason: str


@dataclass
class CreditScoreSnapshot:
    """Persisted credit score for a merchant at one point in time"""

    merchant_id: str
    calculated_at: datetime
    result: CreditScoreResult
    explanation: Optional[str] = None
    recommendation: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def credit_score(self) -> int:
        return self.result.credit_score

    @property
    def risk_band(self) -> RiskBand:
        return self.result.risk_band


@dataclass
class AlertCandidate:
    """Positive detection before annotation and persistence"""

    alert_type: AlertType
    severity: Severity
    metric_name: str
    metric_value: float
    threshold_value: float
    historical_value: float
    deviation_percentage: float


@dataclass
class EarlyWarningAlert:
    """Persisted anomaly alert"""

    merchant_id: str
    alert_type: AlertType
    severity: Severity
    metric_name: str
    metric_value: float
    threshold_value: float
    deviation_percentage: float
    detected_at: datetime
    analysis: Optional[str] = None
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        try:
            self.alert_type = AlertType(self.alert_type)
            self.severity = Severity(self.severity)
        except ValueError as e:
            raise ValidationError(str(e)) from e
