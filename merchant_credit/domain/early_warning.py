"""
Early-warning anomaly detectors.

Each detector compares a recent window against a longer historical window of
the same metric and returns an AlertCandidate, or None when there is no
anomaly or too little data to judge. Detectors are stateless: they never look
at previously raised alerts.
"""

import statistics
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from merchant_credit.domain.aggregation import settlement_latency_days
from merchant_credit.domain.models import (
    AlertCandidate,
    AlertType,
    CreditScoreSnapshot,
    DailyAggregate,
    Severity,
    Transaction,
    TransactionStatus,
)

# Daily-row detectors: newest 10 days vs the 20 before them
RECENT_DAYS = 10
HISTORICAL_DAYS = 20
MIN_DAY_ROWS = 10

REVENUE_DROP_THRESHOLD = 30.0
TRANSACTION_DROP_THRESHOLD = 25.0

REFUND_SPIKE_THRESHOLD = 5.0
MIN_REFUND_SAMPLE = 50

SETTLEMENT_SLA_DAYS = 3.0
MIN_SETTLEMENT_SAMPLE = 10

SCORE_DROP_THRESHOLD = 15


@dataclass
class DetectionWindow:
    """Data the detectors read for one merchant evaluation"""

    daily_rows: List[DailyAggregate] = field(default_factory=list)  # newest first, last 30 days
    transactions: List[Transaction] = field(default_factory=list)  # last 30 days
    snapshots: List[CreditScoreSnapshot] = field(default_factory=list)  # newest first


def drop_severity(drop_percentage: float) -> Severity:
    if drop_percentage > 50:
        return Severity.CRITICAL
    elif drop_percentage >= 40:
        return Severity.MEDIUM
    return Severity.LOW


def _split_windows(rows: Sequence[DailyAggregate]) -> Optional[tuple[Sequence[DailyAggregate], Sequence[DailyAggregate]]]:
    if len(rows) < MIN_DAY_ROWS:
        return None
    recent = rows[:RECENT_DAYS]
    historical = rows[RECENT_DAYS:RECENT_DAYS + HISTORICAL_DAYS]
    if not historical:
        return None
    return recent, historical


def detect_revenue_drop(daily_rows: Sequence[DailyAggregate]) -> Optional[AlertCandidate]:
    """Average daily revenue of the last 10 days vs the prior 20"""
    windows = _split_windows(daily_rows)
    if windows is None:
        return None
    recent, historical = windows

    recent_avg = statistics.fmean(float(r.total_amount) for r in recent)
    historical_avg = statistics.fmean(float(r.total_amount) for r in historical)
    if historical_avg <= 0:
        return None

    drop = (historical_avg - recent_avg) / historical_avg * 100
    if drop <= REVENUE_DROP_THRESHOLD:
        return None

    return AlertCandidate(
        alert_type=AlertType.REVENUE_DROP,
        severity=drop_severity(drop),
        metric_name="Daily Revenue",
        metric_value=recent_avg,
        threshold_value=historical_avg * 0.7,
        historical_value=historical_avg,
        deviation_percentage=drop,
    )


def detect_transaction_drop(daily_rows: Sequence[DailyAggregate]) -> Optional[AlertCandidate]:
    """Average daily transaction count of the last 10 days vs the prior 20"""
    windows = _split_windows(daily_rows)
    if windows is None:
        return None
    recent, historical = windows

    recent_avg = statistics.fmean(r.transaction_count for r in recent)
    historical_avg = statistics.fmean(r.transaction_count for r in historical)
    if historical_avg <= 0:
        return None

    drop = (historical_avg - recent_avg) / historical_avg * 100
    if drop <= TRANSACTION_DROP_THRESHOLD:
        return None

    return AlertCandidate(
        alert_type=AlertType.TRANSACTION_DROP,
        severity=drop_severity(drop),
        metric_name="Transaction Count",
        metric_value=recent_avg,
        threshold_value=historical_avg * 0.75,
        historical_value=historical_avg,
        deviation_percentage=drop,
    )


def detect_refund_spike(transactions: Sequence[Transaction]) -> Optional[AlertCandidate]:
    """Refund rate of the newer half of the window vs the older half, in percentage points"""
    if len(transactions) < MIN_REFUND_SAMPLE:
        return None

    ordered = sorted(transactions, key=lambda t: t.transaction_date, reverse=True)
    mid = len(ordered) // 2
    recent, earlier = ordered[:mid], ordered[mid:]

    recent_rate = sum(1 for t in recent if t.is_refunded) / len(recent) * 100
    earlier_rate = sum(1 for t in earlier if t.is_refunded) / len(earlier) * 100
    spike = recent_rate - earlier_rate
    if spike <= REFUND_SPIKE_THRESHOLD:
        return None

    if spike > 15:
        severity = Severity.CRITICAL
    elif spike > 10:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW

    return AlertCandidate(
        alert_type=AlertType.REFUND_SPIKE,
        severity=severity,
        metric_name="Refund Rate (%)",
        metric_value=recent_rate,
        threshold_value=earlier_rate,
        historical_value=earlier_rate,
        deviation_percentage=spike,
    )


def detect_settlement_delay(transactions: Sequence[Transaction]) -> Optional[AlertCandidate]:
    """Average settlement latency of successful transactions vs the 3-day SLA"""
    latencies = settlement_latency_days(t for t in transactions if t.status == TransactionStatus.SUCCESS)
    if len(latencies) < MIN_SETTLEMENT_SAMPLE:
        return None

    avg_days = statistics.fmean(latencies)
    max_days = max(latencies)
    if avg_days <= SETTLEMENT_SLA_DAYS:
        return None

    if max_days > 7:
        severity = Severity.CRITICAL
    elif avg_days > 5:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW

    return AlertCandidate(
        alert_type=AlertType.SETTLEMENT_DELAY,
        severity=severity,
        metric_name="Settlement Days",
        metric_value=avg_days,
        threshold_value=SETTLEMENT_SLA_DAYS,
        historical_value=SETTLEMENT_SLA_DAYS,
        deviation_percentage=(avg_days - SETTLEMENT_SLA_DAYS) / SETTLEMENT_SLA_DAYS * 100,
    )


def detect_score_drop(snapshots: Sequence[CreditScoreSnapshot]) -> Optional[AlertCandidate]:
    """Latest credit score vs the one before it"""
    if len(snapshots) < 2:
        return None

    latest, previous = snapshots[0].credit_score, snapshots[1].credit_score
    drop = previous - latest
    if drop <= SCORE_DROP_THRESHOLD:
        return None

    if drop > 30:
        severity = Severity.CRITICAL
    elif drop > 20:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW

    return AlertCandidate(
        alert_type=AlertType.SCORE_DROP,
        severity=severity,
        metric_name="Credit Score",
        metric_value=float(latest),
        threshold_value=float(previous),
        historical_value=float(previous),
        deviation_percentage=drop / previous * 100 if previous else 0.0,
    )


def run_detectors(window: DetectionWindow) -> List[AlertCandidate]:
    """Run all five detectors in a fixed order and collect positive detections"""
    results = [
        detect_revenue_drop(window.daily_rows),
        detect_refund_spike(window.transactions),
        detect_settlement_delay(window.transactions),
        detect_transaction_drop(window.daily_rows),
        detect_score_drop(window.snapshots),
    ]
    return [r for r in results if r is not None]
