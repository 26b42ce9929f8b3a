"""Credit scoring engine - core business logic for merchant creditworthiness"""

import math
import statistics
from typing import Dict, Optional, Sequence, Union

from merchant_credit.domain.exceptions import ConfigurationError
from merchant_credit.domain.models import (
    ComponentScores,
    CreditScoreResult,
    InsufficientData,
    RiskBand,
    ScoreMetrics,
    ScoringInputs,
)

WEIGHTS: Dict[str, float] = {
    "transaction_volume": 0.25,
    "revenue_consistency": 0.25,
    "growth_trend": 0.20,
    "refund_rate": 0.10,
    "settlement_time": 0.20,
}

LIMIT_MULTIPLIERS: Dict[RiskBand, float] = {
    RiskBand.LOW: 1.5,
    RiskBand.MEDIUM: 1.0,
    RiskBand.HIGH: 0.5,
}

VOLUME_BENCHMARK = 100  # transactions per scoring window for a full volume score
NEUTRAL_SETTLEMENT_SCORE = 50.0


def validate_weights(weights: Dict[str, float]) -> None:
    if set(weights) != set(ComponentScores.__dataclass_fields__):
        raise ConfigurationError(f"Score weights must cover exactly {sorted(ComponentScores.__dataclass_fields__)}")
    if math.fsum(weights.values()) != 1.0:
        raise ConfigurationError(f"Score weights must sum to 1.0, got {math.fsum(weights.values())}")


validate_weights(WEIGHTS)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def transaction_volume_score(transaction_count: int) -> float:
    """Linear ramp to the 100-transactions-per-window benchmark"""
    return min(100.0, transaction_count / VOLUME_BENCHMARK * 100)


def revenue_volatility(daily_revenues: Sequence[float]) -> float:
    """
    Coefficient of variation of daily revenue, as a percentage capped at 100.

    Fewer than two days, or a zero mean, is defined as zero volatility.
    """
    if len(daily_revenues) < 2:
        return 0.0
    mean = statistics.fmean(daily_revenues)
    if mean == 0:
        return 0.0
    return min(100.0, statistics.pstdev(daily_revenues) / mean * 100)


def revenue_consistency_score(volatility: float) -> float:
    return max(0.0, 100 - volatility)


def growth_percentage(current_month: float, previous_month: float) -> float:
    """Month-over-month growth; no baseline month means zero growth"""
    if previous_month <= 0:
        return 0.0
    return (current_month - previous_month) / previous_month * 100


def growth_trend_score(growth_mom: float) -> float:
    """0% growth scores a neutral 50; +/-20% saturates"""
    return clamp(50 + growth_mom * 2.5)


def refund_rate_percentage(refund_count: int, success_count: int) -> float:
    if refund_count == 0:
        return 0.0
    if success_count == 0:
        return 100.0
    return refund_count / success_count * 100


def refund_rate_score(refund_rate: float) -> float:
    """A 5% refund rate already saturates the score to 0"""
    return clamp(100 - refund_rate * 20)


def settlement_time_score(avg_settlement_days: Optional[float]) -> float:
    """
    Piecewise settlement reliability.

    - <= 1 day:  100
    - <= 3 days: max(50, 100 - days*15)
    - <= 7 days: max(0, 50 - (days-3)*10)
    - > 7 days:  0

    No settled transactions at all scores the neutral 50.
    """
    if avg_settlement_days is None:
        return NEUTRAL_SETTLEMENT_SCORE
    if avg_settlement_days <= 1:
        return 100.0
    if avg_settlement_days <= 3:
        return max(50.0, 100 - avg_settlement_days * 15)
    if avg_settlement_days <= 7:
        return max(0.0, 50 - (avg_settlement_days - 3) * 10)
    return 0.0


def composite_score(components: ComponentScores, weights: Dict[str, float] = WEIGHTS) -> int:
    weighted = sum(getattr(components, name) * weight for name, weight in weights.items())
    return int(clamp(round_half_up(weighted)))


def determine_risk_band(score: int) -> RiskBand:
    """
    Map composite score to risk band.

    - 80+:    Low
    - 60-79:  Medium
    - <60:    High
    """
    if score >= 80:
        return RiskBand.LOW
    elif score >= 60:
        return RiskBand.MEDIUM
    return RiskBand.HIGH


def estimate_credit_limits(avg_monthly_revenue: float, risk_band: RiskBand) -> tuple[float, float]:
    """Returns: (min_limit, max_limit)"""
    multiplier = LIMIT_MULTIPLIERS[risk_band]
    return avg_monthly_revenue * multiplier * 0.8, avg_monthly_revenue * multiplier * 1.2


def calculate_credit_score(inputs: ScoringInputs) -> Union[CreditScoreResult, InsufficientData]:
    """
    Main entry point: turn window aggregates into a scored result.

    An empty window yields InsufficientData rather than a score of 0.
    """
    stats = inputs.stats
    if stats.count == 0:
        return InsufficientData("No transactions in the scoring window")

    volatility = revenue_volatility(inputs.daily_revenues)
    growth = growth_percentage(inputs.current_month_revenue, inputs.previous_month_revenue)
    refund_rate = refund_rate_percentage(stats.refund_count, stats.success_count)
    avg_settlement: Optional[float] = statistics.fmean(inputs.settlement_days) if inputs.settlement_days else None

    components = ComponentScores(
        transaction_volume=transaction_volume_score(stats.count),
        revenue_consistency=revenue_consistency_score(volatility),
        growth_trend=growth_trend_score(growth),
        refund_rate=refund_rate_score(refund_rate),
        settlement_time=settlement_time_score(avg_settlement),
    )

    score = composite_score(components)
    risk_band = determine_risk_band(score)
    avg_monthly_revenue = float(stats.total_amount) / inputs.window_months
    min_limit, max_limit = estimate_credit_limits(avg_monthly_revenue, risk_band)

    return CreditScoreResult(
        credit_score=score,
        risk_band=risk_band,
        estimated_min_limit=min_limit,
        estimated_max_limit=max_limit,
        components=components,
        metrics=ScoreMetrics(
            avg_monthly_revenue=avg_monthly_revenue,
            revenue_volatility=volatility,
            growth_percentage_mom=growth,
            refund_rate_percentage=refund_rate,
            avg_settlement_days=avg_settlement,
            transaction_count=stats.count,
        ),
        weights=dict(WEIGHTS),
    )
