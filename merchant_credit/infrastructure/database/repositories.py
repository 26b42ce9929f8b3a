"""Data access layer for ledger, score and alert entities"""

import uuid
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from merchant_credit.config import settings
from merchant_credit.domain.aggregation import build_daily_aggregates
from merchant_credit.domain.models import (
    ComponentScores,
    CreditScoreResult,
    CreditScoreSnapshot,
    DailyAggregate,
    EarlyWarningAlert,
    ProductLine,
    ScoreMetrics,
    Transaction,
    TransactionMetadata,
    TransactionStatus,
)
from merchant_credit.infrastructure.database.models import (
    CreditScoreRecord,
    DailyRevenue,
    EarlyWarningAlertRecord,
    TransactionRecord,
)
from merchant_credit.utils.date_utils import as_utc, local_day, utcnow


def metadata_to_json(metadata: TransactionMetadata) -> Dict[str, Any]:
    return {
        "description": metadata.description,
        "gatewayReference": metadata.gateway_reference,
        "qrString": metadata.qr_string,
        "productInfo": [
            {
                "id": p.id,
                "name": p.name,
                "price": str(p.price),
                "quantity": p.quantity,
                "type": p.type,
                "url": p.url,
            }
            for p in metadata.product_info
        ],
    }


def metadata_from_json(data: Optional[Dict[str, Any]]) -> TransactionMetadata:
    if not data:
        return TransactionMetadata()
    return TransactionMetadata(
        description=data.get("description"),
        gateway_reference=data.get("gatewayReference"),
        qr_string=data.get("qrString"),
        product_info=[
            ProductLine(
                id=str(p["id"]),
                name=p["name"],
                price=Decimal(str(p["price"])),
                quantity=int(p.get("quantity", 1)),
                type=p.get("type", "General"),
                url=p.get("url"),
            )
            for p in data.get("productInfo") or []
        ],
    )


def transaction_to_domain(row: TransactionRecord) -> Transaction:
    return Transaction(
        transaction_id=row.transaction_id,
        merchant_id=row.merchant_id,
        transaction_date=as_utc(row.transaction_date),
        amount=Decimal(row.amount),
        payment_method=row.payment_method,
        status=row.status,
        refund_status=row.refund_status,
        settlement_date=as_utc(row.settlement_date) if row.settlement_date else None,
        metadata=metadata_from_json(row.metadata_json),
    )


def aggregate_to_domain(row: DailyRevenue) -> DailyAggregate:
    return DailyAggregate(
        merchant_id=row.merchant_id,
        day=row.transaction_date,
        total_amount=Decimal(row.total_amount),
        transaction_count=row.transaction_count,
        successful_count=row.successful_count,
        failed_count=row.failed_count,
        refunded_count=row.refunded_count,
        refund_amount=Decimal(row.refund_amount),
    )


def snapshot_to_domain(row: CreditScoreRecord) -> CreditScoreSnapshot:
    return CreditScoreSnapshot(
        id=row.id,
        merchant_id=row.merchant_id,
        calculated_at=as_utc(row.calculation_date),
        explanation=row.explanation,
        recommendation=row.recommendation,
        result=CreditScoreResult(
            credit_score=row.credit_score,
            risk_band=row.risk_band,
            estimated_min_limit=float(row.estimated_min_limit),
            estimated_max_limit=float(row.estimated_max_limit),
            components=ComponentScores(
                transaction_volume=row.transaction_volume_score,
                revenue_consistency=row.revenue_consistency_score,
                growth_trend=row.growth_trend_score,
                refund_rate=row.refund_rate_score,
                settlement_time=row.settlement_time_score,
            ),
            metrics=ScoreMetrics(
                avg_monthly_revenue=float(row.avg_monthly_revenue),
                revenue_volatility=row.revenue_volatility,
                growth_percentage_mom=row.growth_percentage_mom or 0.0,
                refund_rate_percentage=row.refund_rate_percentage,
                avg_settlement_days=row.avg_settlement_days,
                transaction_count=row.transaction_count_3m,
            ),
            weights=dict(row.feature_importance or {}),
        ),
    )


def alert_to_domain(row: EarlyWarningAlertRecord) -> EarlyWarningAlert:
    return EarlyWarningAlert(
        id=row.id,
        merchant_id=row.merchant_id,
        alert_type=row.alert_type,
        severity=row.severity,
        metric_name=row.metric_name,
        metric_value=row.metric_value,
        threshold_value=row.threshold_value,
        deviation_percentage=row.deviation_percentage,
        detected_at=as_utc(row.detected_date),
        analysis=row.analysis,
        is_resolved=row.is_resolved,
        resolved_at=as_utc(row.resolved_date) if row.resolved_date else None,
        resolved_by=row.resolved_by,
    )


class TransactionRepository:
    """Repository for merchant transactions"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, txn: Transaction) -> Transaction:
        """Persist a new transaction"""
        self.db.add(
            TransactionRecord(
                transaction_id=txn.transaction_id,
                merchant_id=txn.merchant_id,
                transaction_date=as_utc(txn.transaction_date),
                amount=txn.amount,
                payment_method=txn.payment_method,
                status=txn.status,
                refund_status=txn.refund_status,
                settlement_date=as_utc(txn.settlement_date) if txn.settlement_date else None,
                metadata_json=metadata_to_json(txn.metadata),
            )
        )
        self.db.flush()
        return txn

    def get(self, transaction_id: str, merchant_id: Optional[str] = None) -> Optional[Transaction]:
        row = self._get_record(transaction_id, merchant_id)
        return transaction_to_domain(row) if row else None

    def _get_record(self, transaction_id: str, merchant_id: Optional[str] = None) -> Optional[TransactionRecord]:
        query = self.db.query(TransactionRecord).filter(TransactionRecord.transaction_id == transaction_id)
        if merchant_id is not None:
            query = query.filter(TransactionRecord.merchant_id == merchant_id)
        return query.first()

    def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        settlement_date: Optional[datetime] = None,
    ) -> Optional[Transaction]:
        """Mutate status in place; amounts are never rewritten"""
        row = self._get_record(transaction_id)
        if row is None:
            return None
        row.status = status
        if settlement_date is not None:
            row.settlement_date = as_utc(settlement_date)
        self.db.flush()
        return transaction_to_domain(row)

    def list_between(
        self,
        merchant_id: str,
        start: datetime,
        end: datetime,
        status: Optional[TransactionStatus] = None,
    ) -> List[Transaction]:
        """Transactions in [start, end), oldest first"""
        query = self.db.query(TransactionRecord).filter(
            TransactionRecord.merchant_id == merchant_id,
            TransactionRecord.transaction_date >= as_utc(start),
            TransactionRecord.transaction_date < as_utc(end),
        )
        if status is not None:
            query = query.filter(TransactionRecord.status == status)
        return [transaction_to_domain(r) for r in query.order_by(TransactionRecord.transaction_date.asc()).all()]

    def list_page(self, merchant_id: str, limit: int, offset: int = 0) -> Tuple[int, List[Transaction]]:
        """One page of a merchant's transactions, newest first, with the total count"""
        query = self.db.query(TransactionRecord).filter(TransactionRecord.merchant_id == merchant_id)
        total = query.count()
        rows = query.order_by(TransactionRecord.transaction_date.desc()).offset(offset).limit(limit).all()
        return total, [transaction_to_domain(r) for r in rows]


class DailyRevenueRepository:
    """Repository for daily aggregates"""

    def __init__(self, db: Session):
        self.db = db

    def get_window(self, merchant_id: str, start: date, end: date) -> List[DailyAggregate]:
        """Rows with start <= day < end, oldest first"""
        rows = (
            self.db.query(DailyRevenue)
            .filter(
                DailyRevenue.merchant_id == merchant_id,
                DailyRevenue.transaction_date >= start,
                DailyRevenue.transaction_date < end,
            )
            .order_by(DailyRevenue.transaction_date.asc())
            .all()
        )
        return [aggregate_to_domain(r) for r in rows]

    def upsert(self, aggregate: DailyAggregate) -> None:
        row = (
            self.db.query(DailyRevenue)
            .filter(
                DailyRevenue.merchant_id == aggregate.merchant_id,
                DailyRevenue.transaction_date == aggregate.day,
            )
            .first()
        )
        if row is None:
            row = DailyRevenue(merchant_id=aggregate.merchant_id, transaction_date=aggregate.day)
            self.db.add(row)
        row.total_amount = aggregate.total_amount
        row.transaction_count = aggregate.transaction_count
        row.successful_count = aggregate.successful_count
        row.failed_count = aggregate.failed_count
        row.refunded_count = aggregate.refunded_count
        row.refund_amount = aggregate.refund_amount
        self.db.flush()

    def delete(self, merchant_id: str, day: date) -> None:
        self.db.query(DailyRevenue).filter(
            DailyRevenue.merchant_id == merchant_id,
            DailyRevenue.transaction_date == day,
        ).delete()
        self.db.flush()


class CreditScoreRepository:
    """Repository for append-only credit score snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, snapshot: CreditScoreSnapshot) -> CreditScoreSnapshot:
        result = snapshot.result
        self.db.add(
            CreditScoreRecord(
                id=snapshot.id,
                merchant_id=snapshot.merchant_id,
                calculation_date=as_utc(snapshot.calculated_at),
                credit_score=result.credit_score,
                risk_band=result.risk_band,
                estimated_min_limit=result.estimated_min_limit,
                estimated_max_limit=result.estimated_max_limit,
                transaction_volume_score=result.components.transaction_volume,
                revenue_consistency_score=result.components.revenue_consistency,
                growth_trend_score=result.components.growth_trend,
                refund_rate_score=result.components.refund_rate,
                settlement_time_score=result.components.settlement_time,
                avg_monthly_revenue=result.metrics.avg_monthly_revenue,
                revenue_volatility=result.metrics.revenue_volatility,
                growth_percentage_mom=result.metrics.growth_percentage_mom,
                refund_rate_percentage=result.metrics.refund_rate_percentage,
                avg_settlement_days=result.metrics.avg_settlement_days,
                transaction_count_3m=result.metrics.transaction_count,
                feature_importance=result.weights,
                explanation=snapshot.explanation,
                recommendation=snapshot.recommendation,
            )
        )
        self.db.flush()
        return snapshot

    def latest(self, merchant_id: str, limit: int = 1) -> List[CreditScoreSnapshot]:
        """Most recent snapshots, newest first"""
        rows = (
            self.db.query(CreditScoreRecord)
            .filter(CreditScoreRecord.merchant_id == merchant_id)
            .order_by(CreditScoreRecord.calculation_date.desc())
            .limit(limit)
            .all()
        )
        return [snapshot_to_domain(r) for r in rows]

    def latest_per_merchant(self, merchant_ids: List[str]) -> Dict[str, CreditScoreSnapshot]:
        """Newest snapshot for each of the given merchants that has one"""
        rows = (
            self.db.query(CreditScoreRecord)
            .filter(CreditScoreRecord.merchant_id.in_(merchant_ids))
            .order_by(CreditScoreRecord.merchant_id, CreditScoreRecord.calculation_date.desc())
            .all()
        )
        latest: Dict[str, CreditScoreSnapshot] = {}
        for row in rows:
            if row.merchant_id not in latest:
                latest[row.merchant_id] = snapshot_to_domain(row)
        return latest


class AlertRepository:
    """Repository for early-warning alerts"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, alert: EarlyWarningAlert) -> EarlyWarningAlert:
        self.db.add(
            EarlyWarningAlertRecord(
                id=alert.id,
                merchant_id=alert.merchant_id,
                alert_type=alert.alert_type,
                severity=alert.severity,
                detected_date=as_utc(alert.detected_at),
                metric_name=alert.metric_name,
                metric_value=alert.metric_value,
                threshold_value=alert.threshold_value,
                deviation_percentage=alert.deviation_percentage,
                analysis=alert.analysis,
                is_resolved=alert.is_resolved,
            )
        )
        self.db.flush()
        return alert

    def unresolved(self, merchant_id: str) -> List[EarlyWarningAlert]:
        rows = (
            self.db.query(EarlyWarningAlertRecord)
            .filter(
                EarlyWarningAlertRecord.merchant_id == merchant_id,
                EarlyWarningAlertRecord.is_resolved.is_(False),
            )
            .order_by(EarlyWarningAlertRecord.detected_date.desc())
            .all()
        )
        return [alert_to_domain(r) for r in rows]

    def resolve(self, alert_id: uuid.UUID, resolved_by: Optional[str], resolved_at: datetime) -> Optional[EarlyWarningAlert]:
        row = self.db.query(EarlyWarningAlertRecord).filter(EarlyWarningAlertRecord.id == alert_id).first()
        if row is None:
            return None
        if not row.is_resolved:
            row.is_resolved = True
            row.resolved_date = as_utc(resolved_at)
            row.resolved_by = resolved_by
            self.db.flush()
        return alert_to_domain(row)


class LedgerStore:
    """Persistence collaborator consumed by the scoring and early-warning services"""

    def __init__(self, db: Session, tz: tzinfo | None = None):
        self.db = db
        self.tz = tz or ZoneInfo(settings.gateway_timezone)
        self.transactions = TransactionRepository(db)
        self.daily_revenue = DailyRevenueRepository(db)
        self.scores = CreditScoreRepository(db)
        self.alerts = AlertRepository(db)

    def _day_start(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(timezone.utc)

    def get_window_aggregates(self, merchant_id: str, start: date, end: date) -> List[DailyAggregate]:
        return self.daily_revenue.get_window(merchant_id, start, end)

    def get_transactions(
        self,
        merchant_id: str,
        start: date,
        end: date,
        status: Optional[TransactionStatus] = None,
    ) -> List[Transaction]:
        return self.transactions.list_between(merchant_id, self._day_start(start), self._day_start(end), status)

    def save_score_snapshot(self, snapshot: CreditScoreSnapshot) -> CreditScoreSnapshot:
        return self.scores.save(snapshot)

    def get_latest_snapshots(self, merchant_id: str, n: int) -> List[CreditScoreSnapshot]:
        return self.scores.latest(merchant_id, limit=n)

    def save_alert(self, alert: EarlyWarningAlert) -> EarlyWarningAlert:
        return self.alerts.save(alert)

    def get_unresolved_alerts(self, merchant_id: str) -> List[EarlyWarningAlert]:
        return self.alerts.unresolved(merchant_id)

    def resolve_alert(
        self,
        alert_id: uuid.UUID,
        resolved_by: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
    ) -> Optional[EarlyWarningAlert]:
        return self.alerts.resolve(alert_id, resolved_by, resolved_at or utcnow())

    def local_day(self, moment: datetime) -> date:
        return local_day(moment, self.tz)

    def rebuild_daily_aggregate(self, merchant_id: str, day: date) -> DailyAggregate:
        """Recompute one day's rollup from the raw ledger"""
        day_start = self._day_start(day)
        next_day = day + timedelta(days=1)
        transactions = self.transactions.list_between(merchant_id, day_start, self._day_start(next_day))
        rows = build_daily_aggregates(transactions, self.tz)
        if not rows:
            # Days with only pending activity have no row
            self.daily_revenue.delete(merchant_id, day)
            return DailyAggregate(merchant_id=merchant_id, day=day)
        self.daily_revenue.upsert(rows[0])
        return rows[0]
