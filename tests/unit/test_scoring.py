"""Unit tests for credit scoring logic"""

import math
import random
import pytest
from decimal import Decimal

from merchant_credit.domain.exceptions import ConfigurationError
from merchant_credit.domain.models import ComponentScores, InsufficientData, RiskBand, ScoringInputs, WindowStats
from merchant_credit.domain.scoring import (
    WEIGHTS,
    calculate_credit_score,
    composite_score,
    determine_risk_band,
    estimate_credit_limits,
    growth_percentage,
    growth_trend_score,
    refund_rate_percentage,
    refund_rate_score,
    revenue_consistency_score,
    revenue_volatility,
    settlement_time_score,
    transaction_volume_score,
    validate_weights,
)


def _inputs(count=120, success=None, refunds=0, total="30000000", daily=None, settlement=None, current=0.0, previous=0.0):
    success = count - refunds if success is None else success
    return ScoringInputs(
        stats=WindowStats(
            total_amount=Decimal(total),
            count=count,
            success_count=success,
            fail_count=count - success - refunds,
            refund_count=refunds,
        ),
        daily_revenues=daily if daily is not None else [100.0] * 30,
        settlement_days=settlement if settlement is not None else [1.0] * 10,
        current_month_revenue=current,
        previous_month_revenue=previous,
    )


def test_weights_sum_to_exactly_one():
    assert math.fsum(WEIGHTS.values()) == 1.0
    assert set(WEIGHTS) == {"transaction_volume", "revenue_consistency", "growth_trend", "refund_rate", "settlement_time"}


def test_validate_weights_rejects_bad_total():
    with pytest.raises(ConfigurationError):
        validate_weights({**WEIGHTS, "refund_rate": 0.15})


def test_validate_weights_rejects_missing_component():
    weights = dict(WEIGHTS)
    del weights["growth_trend"]
    with pytest.raises(ConfigurationError):
        validate_weights(weights)


def test_zero_volatility_gives_full_consistency():
    volatility = revenue_volatility([100, 100, 100, 100, 100])
    assert volatility == 0.0
    assert revenue_consistency_score(volatility) == 100.0


def test_volatility_edge_cases():
    assert revenue_volatility([]) == 0.0
    assert revenue_volatility([500]) == 0.0
    assert revenue_volatility([0, 0, 0]) == 0.0
    # Extremely uneven revenue is capped
    assert revenue_volatility([0, 0, 0, 0, 1000]) == 100.0
    assert revenue_consistency_score(100.0) == 0.0


@pytest.mark.parametrize(
    "days,expected",
    [
        (0.5, 100.0),
        (1.0, 100.0),
        (2.0, 70.0),
        (3.0, 55.0),
        (5.0, 30.0),
        (7.0, 10.0),
        (8.0, 0.0),
    ],
)
def test_settlement_time_score(days, expected):
    assert settlement_time_score(days) == pytest.approx(expected)


def test_settlement_time_without_settlements_is_neutral():
    assert settlement_time_score(None) == 50.0


def test_transaction_volume_score_caps_at_benchmark():
    assert transaction_volume_score(0) == 0.0
    assert transaction_volume_score(50) == 50.0
    assert transaction_volume_score(100) == 100.0
    assert transaction_volume_score(250) == 100.0


def test_growth_trend_score():
    assert growth_percentage(120.0, 100.0) == pytest.approx(20.0)
    assert growth_percentage(500.0, 0.0) == 0.0
    assert growth_trend_score(0.0) == 50.0
    assert growth_trend_score(20.0) == 100.0
    assert growth_trend_score(-20.0) == 0.0
    assert growth_trend_score(-80.0) == 0.0


def test_refund_rate_score():
    assert refund_rate_percentage(0, 0) == 0.0
    assert refund_rate_percentage(2, 100) == 2.0
    assert refund_rate_percentage(3, 0) == 100.0
    assert refund_rate_score(0.0) == 100.0
    assert refund_rate_score(2.0) == 60.0
    assert refund_rate_score(5.0) == 0.0
    assert refund_rate_score(100.0) == 0.0


def test_composite_score_range_for_random_components():
    rng = random.Random(42)
    for _ in range(500):
        components = ComponentScores(*(rng.uniform(0, 100) for _ in range(5)))
        assert 0 <= composite_score(components) <= 100

    assert composite_score(ComponentScores(0, 0, 0, 0, 0)) == 0
    assert composite_score(ComponentScores(100, 100, 100, 100, 100)) == 100


def test_composite_score_rounds_half_up():
    # 50 * .25 + 50 * .25 + 50 * .2 + 55 * .1 + 50 * .2 = 50.5
    assert composite_score(ComponentScores(50, 50, 50, 55, 50)) == 51


@pytest.mark.parametrize(
    "score,band",
    [(100, RiskBand.LOW), (80, RiskBand.LOW), (79, RiskBand.MEDIUM), (60, RiskBand.MEDIUM), (59, RiskBand.HIGH), (0, RiskBand.HIGH)],
)
def test_determine_risk_band(score, band):
    assert determine_risk_band(score) == band


def test_estimate_credit_limits():
    assert estimate_credit_limits(10_000_000, RiskBand.LOW) == pytest.approx((12_000_000, 18_000_000))
    assert estimate_credit_limits(10_000_000, RiskBand.MEDIUM) == pytest.approx((8_000_000, 12_000_000))
    assert estimate_credit_limits(10_000_000, RiskBand.HIGH) == pytest.approx((4_000_000, 6_000_000))


def test_zero_transactions_is_insufficient_data_not_zero():
    outcome = calculate_credit_score(_inputs(count=0, total="0", daily=[], settlement=[]))

    assert isinstance(outcome, InsufficientData)
    assert outcome.reason


def test_healthy_merchant_scores_low_risk():
    result = calculate_credit_score(_inputs(current=110.0, previous=100.0))

    # volume 100, consistency 100, growth 75, refund 100, settlement 100
    assert result.components.growth_trend == pytest.approx(75.0)
    assert result.credit_score == 95
    assert result.risk_band == RiskBand.LOW
    assert result.metrics.avg_monthly_revenue == pytest.approx(10_000_000)
    assert result.estimated_min_limit == pytest.approx(12_000_000)
    assert result.estimated_max_limit == pytest.approx(18_000_000)
    assert result.weights == WEIGHTS


def test_no_settlements_records_none_and_neutral_component():
    result = calculate_credit_score(_inputs(settlement=[]))

    assert result.metrics.avg_settlement_days is None
    assert result.components.settlement_time == 50.0


def test_refund_heavy_merchant_is_high_risk():
    result = calculate_credit_score(
        _inputs(count=20, refunds=10, daily=[0, 0, 1000, 0, 0], settlement=[9.0], current=50.0, previous=100.0)
    )

    assert result.components.refund_rate == 0.0
    assert result.components.settlement_time == 0.0
    assert result.risk_band == RiskBand.HIGH
    assert 0 <= result.credit_score < 60
