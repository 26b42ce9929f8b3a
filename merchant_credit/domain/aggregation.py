"""Windowed transaction aggregates feeding scoring and early warning"""

from datetime import date, timezone, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from merchant_credit.domain.models import (
    DailyAggregate,
    Transaction,
    TransactionStatus,
    WindowStats,
)
from merchant_credit.utils.date_utils import as_utc, local_day

SECONDS_PER_DAY = 24 * 60 * 60

# Pending transactions have not resolved yet and stay out of the rollups
RESOLVED_STATUSES = (TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.REFUNDED)


class LedgerSource(Protocol):
    """Read side of the persistence collaborator used by the aggregator"""

    def get_window_aggregates(self, merchant_id: str, start: date, end: date) -> List[DailyAggregate]:
        ...

    def get_transactions(
        self,
        merchant_id: str,
        start: date,
        end: date,
        status: Optional[TransactionStatus] = None,
    ) -> List[Transaction]:
        ...


def summarize_aggregates(rows: Iterable[DailyAggregate]) -> WindowStats:
    total = Decimal("0")
    count = success = failed = refunded = 0
    for row in rows:
        total += row.total_amount
        count += row.transaction_count
        success += row.successful_count
        failed += row.failed_count
        refunded += row.refunded_count
    return WindowStats(
        total_amount=total,
        count=count,
        success_count=success,
        fail_count=failed,
        refund_count=refunded,
    )


def summarize_transactions(transactions: Iterable[Transaction]) -> WindowStats:
    rows = build_daily_aggregates(transactions)
    return summarize_aggregates(rows)


def build_daily_aggregates(transactions: Iterable[Transaction], tz: tzinfo = timezone.utc) -> List[DailyAggregate]:
    """
    Rebuild daily rollups from raw transactions.

    total_amount is revenue (Success only); transaction_count covers every
    resolved transaction. Rows come back ordered by (merchant, day).
    """
    rows: Dict[Tuple[str, date], DailyAggregate] = {}
    for txn in transactions:
        if txn.status not in RESOLVED_STATUSES:
            continue
        key = (txn.merchant_id, local_day(txn.transaction_date, tz))
        row = rows.get(key)
        if row is None:
            row = rows[key] = DailyAggregate(merchant_id=key[0], day=key[1])

        row.transaction_count += 1
        if txn.status == TransactionStatus.SUCCESS:
            row.successful_count += 1
            row.total_amount += txn.amount
        elif txn.status == TransactionStatus.FAILED:
            row.failed_count += 1
        else:
            row.refunded_count += 1
            row.refund_amount += txn.amount

    return [rows[key] for key in sorted(rows)]


def settlement_latency_days(transactions: Iterable[Transaction]) -> List[float]:
    """
    Days between transaction and settlement, settled transactions only.

    An empty result means "no data"; callers must not read it as a zero
    average.
    """
    return [
        (as_utc(t.settlement_date) - as_utc(t.transaction_date)).total_seconds() / SECONDS_PER_DAY
        for t in transactions
        if t.settlement_date is not None
    ]


def daily_revenue_series(rows: Sequence[DailyAggregate]) -> List[float]:
    return [float(r.total_amount) for r in rows]


def monthly_revenue(rows: Iterable[DailyAggregate], year: int, month: int) -> float:
    return float(sum((r.total_amount for r in rows if r.day.year == year and r.day.month == month), Decimal("0")))


class TransactionAggregator:
    """Window statistics, preferring precomputed daily rows over raw scans"""

    def __init__(self, source: LedgerSource):
        self.source = source

    def window_stats(self, merchant_id: str, start: date, end: date) -> WindowStats:
        """Totals over the half-open range [start, end)"""
        rows = self.source.get_window_aggregates(merchant_id, start, end)
        if rows:
            return summarize_aggregates(rows)
        return summarize_transactions(self.source.get_transactions(merchant_id, start, end))
