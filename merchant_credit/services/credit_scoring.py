"""Credit scoring use case: gather the window, score, explain, persist"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from merchant_credit.config import settings
from merchant_credit.domain.aggregation import (
    TransactionAggregator,
    build_daily_aggregates,
    daily_revenue_series,
    monthly_revenue,
    settlement_latency_days,
)
from merchant_credit.domain.models import (
    CreditScoreResult,
    CreditScoreSnapshot,
    InsufficientData,
    RiskBand,
    ScoringInputs,
)
from merchant_credit.domain.scoring import calculate_credit_score
from merchant_credit.infrastructure.clients.explainer import TextExplainer
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.observability.logging import log_score_calculated
from merchant_credit.infrastructure.observability.metrics import insufficient_data_counter, record_score
from merchant_credit.utils.date_utils import months_ago, previous_month, utcnow


def explanation_fields(result: CreditScoreResult) -> Dict[str, Any]:
    """Flat view of a result handed to the text-generation service"""
    return {
        "credit_score": result.credit_score,
        "risk_band": result.risk_band.value,
        "transaction_volume_score": round(result.components.transaction_volume, 2),
        "revenue_consistency_score": round(result.components.revenue_consistency, 2),
        "growth_trend_score": round(result.components.growth_trend, 2),
        "refund_rate_score": round(result.components.refund_rate, 2),
        "settlement_time_score": round(result.components.settlement_time, 2),
        "avg_monthly_revenue": round(result.metrics.avg_monthly_revenue, 2),
        "growth_percentage_mom": round(result.metrics.growth_percentage_mom, 2),
        "refund_rate_percentage": round(result.metrics.refund_rate_percentage, 2),
        "avg_settlement_days": result.metrics.avg_settlement_days,
    }


@dataclass
class PortfolioAssessment:
    """Latest scores across a set of merchants"""

    assessed_at: datetime
    merchant_ids: List[str]
    snapshots: List[CreditScoreSnapshot] = field(default_factory=list)

    @property
    def total_merchants(self) -> int:
        return len(self.merchant_ids)

    @property
    def unscored(self) -> List[str]:
        scored = {s.merchant_id for s in self.snapshots}
        return [m for m in self.merchant_ids if m not in scored]

    @property
    def avg_credit_score(self) -> Optional[float]:
        if not self.snapshots:
            return None
        return sum(s.credit_score for s in self.snapshots) / len(self.snapshots)

    def band_count(self, band: RiskBand) -> int:
        return sum(1 for s in self.snapshots if s.risk_band == band)

    @property
    def total_max_limit(self) -> float:
        return sum(s.result.estimated_max_limit for s in self.snapshots)


class CreditScoringService:
    """Scores one merchant at a time against the trailing window"""

    def __init__(self, store: LedgerStore, explainer: TextExplainer, window_months: Optional[int] = None):
        self.store = store
        self.explainer = explainer
        self.window_months = window_months or settings.scoring_window_months

    def gather_inputs(self, merchant_id: str, now: datetime) -> ScoringInputs:
        """Window is [local day `window_months` ago, tomorrow) in the business timezone"""
        today = self.store.local_day(now)
        start = self.store.local_day(months_ago(now, self.window_months))
        end = today + timedelta(days=1)

        stats = TransactionAggregator(self.store).window_stats(merchant_id, start, end)
        transactions = self.store.get_transactions(merchant_id, start, end)
        rows = self.store.get_window_aggregates(merchant_id, start, end)
        if not rows:
            rows = build_daily_aggregates(transactions, self.store.tz)

        prev_year, prev_month = previous_month(today.year, today.month)
        return ScoringInputs(
            stats=stats,
            daily_revenues=daily_revenue_series(rows),
            settlement_days=settlement_latency_days(transactions),
            current_month_revenue=monthly_revenue(rows, today.year, today.month),
            previous_month_revenue=monthly_revenue(rows, prev_year, prev_month),
            window_months=self.window_months,
        )

    async def calculate(
        self,
        merchant_id: str,
        now: Optional[datetime] = None,
        request_id: Optional[str] = None,
    ) -> Union[CreditScoreSnapshot, InsufficientData]:
        """
        Score a merchant and persist the snapshot.

        InsufficientData is returned untouched and nothing is stored. The
        explanation is best-effort; the explainer never raises.
        """
        start_time = time.time()
        now = now or utcnow()

        outcome = calculate_credit_score(self.gather_inputs(merchant_id, now))
        if isinstance(outcome, InsufficientData):
            insufficient_data_counter.inc()
            logging.warning(
                f"Insufficient data for {merchant_id}: {outcome.reason}",
                extra={"request_id": request_id, "merchant_id": merchant_id},
            )
            return outcome

        explanation = await self.explainer.explain_score(explanation_fields(outcome))
        snapshot = self.store.save_score_snapshot(
            CreditScoreSnapshot(
                merchant_id=merchant_id,
                calculated_at=now,
                result=outcome,
                explanation=explanation.explanation,
                recommendation=explanation.recommendation,
            )
        )

        record_score(outcome.risk_band.value, outcome.credit_score)
        log_score_calculated(
            merchant_id,
            outcome.credit_score,
            outcome.risk_band.value,
            (time.time() - start_time) * 1000,
            request_id,
        )
        return snapshot

    def latest(self, merchant_id: str) -> Optional[CreditScoreSnapshot]:
        snapshots = self.store.get_latest_snapshots(merchant_id, 1)
        return snapshots[0] if snapshots else None

    def history(self, merchant_id: str, limit: int = 20) -> List[CreditScoreSnapshot]:
        """Stored snapshots, newest first"""
        return self.store.get_latest_snapshots(merchant_id, limit)

    def batch_assessment(self, merchant_ids: List[str], now: Optional[datetime] = None) -> PortfolioAssessment:
        """
        Summarize the newest stored score of each merchant.

        Nothing is recalculated; merchants never scored are listed as
        unscored and left out of the averages and band counts.
        """
        unique_ids = list(dict.fromkeys(merchant_ids))
        latest = self.store.scores.latest_per_merchant(unique_ids)
        return PortfolioAssessment(
            assessed_at=now or utcnow(),
            merchant_ids=unique_ids,
            snapshots=[latest[m] for m in unique_ids if m in latest],
        )
