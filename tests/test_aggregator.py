"""Tests for weight renormalization and composite aggregation."""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, iso
from gscore_mcp.scoring.aggregator import (
    InsufficientFactorsError,
    aggregate,
    apply_sensitivity_transform,
    build_composite_result,
    final_score,
    health_for,
    usable_factors,
)
from gscore_mcp.scoring.config import ConfigProvider
from gscore_mcp.scoring.models import FactorResult, FactorSummary, TransformConfig
from gscore_mcp.scoring.staleness import classify_factors
from gscore_mcp.scoring.validator import validate_composite_score


def summary(key: str, weight: float, score: float | None, status: str = "fresh") -> FactorSummary:
    return FactorSummary(key=key, label=key.upper(), pillar="p", weight=weight, score=score, status=status)


@pytest.fixture
def classified(config, factor_scores):
    """Default-config summaries, all fresh at FIXED_NOW."""
    stamp = iso(FIXED_NOW - timedelta(hours=1))
    results = {k: FactorResult(score=s, last_utc=stamp) for k, s in factor_scores.items()}
    return classify_factors(results, config, FIXED_NOW)


class TestAggregate:
    """Tests for aggregate without a configuration."""

    def test_single_fresh_factor_takes_all_weight(self) -> None:
        """One fresh factor at 80 and one excluded gives a raw composite of 80."""
        factors = [summary("a", 60, 80), summary("b", 40, 0, status="excluded")]
        agg = aggregate(factors)

        assert agg.weights == {"a": 1.0}
        assert agg.raw_composite == 80
        assert agg.included == ("a",)
        assert agg.excluded == ("b",)

    def test_equal_weights(self) -> None:
        factors = [summary(k, 25, s) for k, s in zip("abcd", (10, 20, 30, 40))]
        assert aggregate(factors).raw_composite == 25

    def test_weights_sum_to_one(self, fresh_summaries) -> None:
        agg = aggregate(fresh_summaries)
        assert sum(agg.weights.values()) == pytest.approx(1.0)
        assert agg.raw_composite == 62
        assert agg.total_effective_weight == 100

    def test_stale_factor_not_counted(self) -> None:
        factors = [summary("a", 50, 80), summary("b", 50, 20, status="stale")]
        agg = aggregate(factors)
        assert agg.raw_composite == 80
        assert agg.excluded == ("b",)

    def test_raw_rounds_half_up(self) -> None:
        factors = [summary("a", 50, 80), summary("b", 50, 81)]
        agg = aggregate(factors)
        assert agg.unrounded == pytest.approx(80.5)
        assert agg.raw_composite == 81

    def test_no_usable_factors_raises(self) -> None:
        factors = [summary("a", 50, 10, status="stale"), summary("b", 50, None, status="excluded")]
        with pytest.raises(InsufficientFactorsError) as exc_info:
            aggregate(factors)
        assert exc_info.value.usable == 0
        assert exc_info.value.required == 1

    def test_min_factors_gate(self, fresh_summaries) -> None:
        with pytest.raises(InsufficientFactorsError):
            aggregate(fresh_summaries, min_factors=4)
        assert aggregate(fresh_summaries, min_factors=3).raw_composite == 62

    def test_usable_factors(self, fresh_summaries) -> None:
        factors = fresh_summaries + [summary("d", 10, 50, status="stale")]
        assert [f.key for f in usable_factors(factors)] == ["a", "b", "c"]


class TestAggregateWithConfig:
    """Weights come from the configuration, not from the summaries."""

    def test_all_fresh(self, classified, config) -> None:
        agg = aggregate(classified, config)
        assert agg.raw_composite == 55
        assert len(agg.included) == 8
        assert agg.total_effective_weight == pytest.approx(100)

    def test_renormalized_over_fresh(self, config, factor_scores) -> None:
        stamp = iso(FIXED_NOW - timedelta(hours=1))
        results = {k: FactorResult(score=s, last_utc=stamp) for k, s in factor_scores.items()}
        results["trend_valuation"] = FactorResult.failed("trend_valuation_error")
        summaries = classify_factors(results, config, FIXED_NOW)

        agg = aggregate(summaries, config)
        # (5500 - 20 * 70) / 80
        assert agg.unrounded == pytest.approx(51.25)
        assert agg.raw_composite == 51
        assert "trend_valuation" in agg.excluded
        assert sum(agg.weights.values()) == pytest.approx(1.0)
        assert agg.total_effective_weight == pytest.approx(80)

    def test_disabled_factor_never_included(self, factor_scores) -> None:
        overrides = {"factors": {"etf_flows": {"enabled": False}, "stablecoins": {"weight": 20}}}
        config = ConfigProvider(strict=True, overrides=overrides, env={}).get_config()
        stamp = iso(FIXED_NOW - timedelta(hours=1))
        results = {k: FactorResult(score=s, last_utc=stamp) for k, s in factor_scores.items()}

        agg = aggregate(classify_factors(results, config, FIXED_NOW), config)
        assert "etf_flows" not in agg.weights
        assert "etf_flows" in agg.excluded

    def test_config_min_factors(self, config) -> None:
        stamp = iso(FIXED_NOW)
        summaries = classify_factors(
            {"stablecoins": FactorResult(score=40, last_utc=stamp)}, config, FIXED_NOW
        )
        with pytest.raises(InsufficientFactorsError) as exc_info:
            aggregate(summaries, config)
        assert exc_info.value.required == 2
        assert exc_info.value.total == 8


class TestTransformAndFinal:
    """Tests for the sensitivity transform and final composition."""

    def test_transform_disabled_is_identity(self) -> None:
        assert apply_sensitivity_transform(73.0, TransformConfig(enabled=False)) == 73.0
        assert apply_sensitivity_transform(73.0, None) == 73.0

    def test_transform_stretches_away_from_pivot(self) -> None:
        params = TransformConfig(enabled=True, pivot=50, gain=0.15)
        assert apply_sensitivity_transform(80.0, params) == pytest.approx(82.7)
        assert apply_sensitivity_transform(20.0, params) == pytest.approx(17.3)
        assert apply_sensitivity_transform(50.0, params) == 50.0

    def test_transform_clamped(self) -> None:
        params = TransformConfig(enabled=True, pivot=50, gain=1.0)
        assert apply_sensitivity_transform(100.0, params) == 100.0
        assert apply_sensitivity_transform(0.0, params) == 0.0

    def test_final_adds_adjustments(self) -> None:
        assert final_score(55, None, 1.5, -0.7) == 55.8

    def test_final_clamped(self) -> None:
        assert final_score(99, None, 2.0, 6.0) == 100.0
        assert final_score(1, None, -2.0, -6.0) == 0.0


class TestBuildCompositeResult:
    def test_end_to_end(self, classified, config) -> None:
        result = build_composite_result(classified, config, cycle_pts=1.5, spike_pts=-0.7)

        assert result.raw_composite == 55
        assert result.final_composite == 55.8
        assert result.band.key == "hold_wait"
        assert result.adjustments == {"cycle": 1.5, "spike": -0.7}
        assert result.excluded_factor_keys == ()

    def test_band_follows_final_score(self, classified, config) -> None:
        result = build_composite_result(classified, config, cycle_pts=2.0, spike_pts=6.0)
        assert result.final_composite == 63.0
        assert result.band.key == "hold_wait"

    def test_transform_applied(self, classified) -> None:
        config = ConfigProvider(
            strict=True, overrides={"transform": {"enabled": True}}, env={}
        ).get_config()
        result = build_composite_result(classified, config)
        # 50 + 5 * (1 + 0.15 * 5 / 50)
        assert result.transformed_composite == pytest.approx(55.075)
        assert result.final_composite == 55.1

    def test_transform_uses_unrounded_raw(self) -> None:
        config = ConfigProvider(
            strict=True, overrides={"transform": {"enabled": True}}, env={}
        ).get_config()
        factors = [summary("stablecoins", 15, 89.5), summary("trend_valuation", 20, 89.5)]

        result = build_composite_result(factors, config)

        assert result.raw_composite == 90
        # 50 + 39.5 * (1 + 0.15 * 39.5 / 50), not the 94.8 the rounded 90 gives
        assert result.transformed_composite == pytest.approx(94.18075)
        assert result.final_composite == 94.2
        check = validate_composite_score(factors, result.final_composite, result.adjustments, config.transform)
        assert check.valid
        assert check.delta <= 0.05


class TestHealth:
    @pytest.mark.parametrize(
        "included,total,required,expected",
        [(8, 8, 2, "green"), (6, 8, 2, "yellow"), (1, 8, 2, "red"), (0, 8, 0, "red")],
    )
    def test_health(self, included, total, required, expected) -> None:
        assert health_for(included, total, required) == expected
