"""SQLAlchemy ORM models for the merchant ledger, scores and alerts"""

import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from merchant_credit.domain.models import (
    AlertType,
    PaymentMethod,
    RefundStatus,
    RiskBand,
    Severity,
    TransactionStatus,
)

Base = declarative_base()


def _values(enum_cls):
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32)


class TransactionRecord(Base):
    """Merchant payment transaction"""

    __tablename__ = "transactions"

    transaction_id = Column(String(100), primary_key=True)
    merchant_id = Column(String(50), nullable=False, index=True)
    transaction_date = Column(DateTime(timezone=True), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(_values(PaymentMethod), nullable=True)
    status = Column(_values(TransactionStatus), nullable=False, default=TransactionStatus.PENDING)
    refund_status = Column(_values(RefundStatus), nullable=False, default=RefundStatus.NONE)
    settlement_date = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class DailyRevenue(Base):
    """Per-merchant, per-day rollup rebuilt from transactions"""

    __tablename__ = "daily_revenue"
    __table_args__ = (UniqueConstraint("merchant_id", "transaction_date", name="uq_daily_revenue_merchant_day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(String(50), nullable=False, index=True)
    transaction_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)
    transaction_count = Column(Integer, nullable=False, default=0)
    successful_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    refunded_count = Column(Integer, nullable=False, default=0)
    refund_amount = Column(Numeric(15, 2), nullable=False, default=0)


class CreditScoreRecord(Base):
    """Append-only credit score snapshot"""

    __tablename__ = "credit_scores"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id = Column(String(50), nullable=False, index=True)
    calculation_date = Column(DateTime(timezone=True), nullable=False, index=True)
    credit_score = Column(Integer, nullable=False)
    risk_band = Column(_values(RiskBand), nullable=False)
    estimated_min_limit = Column(Numeric(15, 2), nullable=False)
    estimated_max_limit = Column(Numeric(15, 2), nullable=False)

    # Component scores
    transaction_volume_score = Column(Float, nullable=False)
    revenue_consistency_score = Column(Float, nullable=False)
    growth_trend_score = Column(Float, nullable=False)
    refund_rate_score = Column(Float, nullable=False)
    settlement_time_score = Column(Float, nullable=False)

    # Metrics
    avg_monthly_revenue = Column(Numeric(15, 2), nullable=False)
    revenue_volatility = Column(Float, nullable=False)
    growth_percentage_mom = Column(Float, nullable=True)
    refund_rate_percentage = Column(Float, nullable=False)
    avg_settlement_days = Column(Float, nullable=True)
    transaction_count_3m = Column(Integer, nullable=False)
    feature_importance = Column(JSON, nullable=True)

    explanation = Column(Text, nullable=True)
    recommendation = Column(Text, nullable=True)


class EarlyWarningAlertRecord(Base):
    """Anomaly alert; resolved only by an operator"""

    __tablename__ = "early_warning_alerts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    merchant_id = Column(String(50), nullable=False, index=True)
    alert_type = Column(_values(AlertType), nullable=False)
    severity = Column(_values(Severity), nullable=False)
    detected_date = Column(DateTime(timezone=True), nullable=False)
    metric_name = Column(String(50), nullable=False)
    metric_value = Column(Float, nullable=False)
    threshold_value = Column(Float, nullable=False)
    deviation_percentage = Column(Float, nullable=False)
    analysis = Column(Text, nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_date = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(100), nullable=True)
