"""Tests for the cycle and spike adjustments."""

import asyncio
import math
from datetime import timezone
from unittest.mock import AsyncMock, patch

import pandas as pd
import pytest

from conftest import FIXED_NOW, power_law_weekly
from gscore_mcp.scoring.adjustments import (
    MIN_WEEKLY_POINTS,
    compute_cycle_adjustment,
    compute_cycle_adjustment_live,
    compute_spike_adjustment,
    compute_spike_adjustment_live,
    cycle_history_days,
    ewma_sigma,
)
from gscore_mcp.scoring.models import CycleConfig, SpikeDetectorConfig

FLAT = [100.0] * 70


class TestEwmaSigma:
    def test_empty_returns_floor(self) -> None:
        assert ewma_sigma([], 0.94, 0.02) == 0.02

    def test_quiet_market_floored(self) -> None:
        assert ewma_sigma([0.0] * 30, 0.94, 0.02) == 0.02

    def test_constant_returns(self) -> None:
        assert ewma_sigma([0.05] * 30, 0.94, 0.02) == pytest.approx(0.05)


class TestSpike:
    """Tests for compute_spike_adjustment."""

    def test_below_activation_is_zero(self) -> None:
        """A 1% move on a 2% sigma floor gives z = 0.5, no adjustment."""
        result = compute_spike_adjustment(FLAT, 101.0, SpikeDetectorConfig(), FIXED_NOW)
        assert result.adj_pts == 0.0
        assert result.reason == "below_activation"
        assert result.diagnostics["z"] == pytest.approx(math.log(1.01) / 0.02)

    def test_up_spike(self) -> None:
        spot = 100.0 * math.exp(0.06)
        result = compute_spike_adjustment(FLAT, spot, SpikeDetectorConfig(), FIXED_NOW)
        # tanh(3 / 2) * 6
        assert result.adj_pts == 5.4
        assert result.reason is None
        assert result.last_utc == "2025-03-12T15:00:00Z"

    def test_down_spike_lowers_risk_by_default(self) -> None:
        spot = 100.0 * math.exp(-0.06)
        result = compute_spike_adjustment(FLAT, spot, SpikeDetectorConfig(), FIXED_NOW)
        assert result.adj_pts == -5.4

    def test_down_moves_raise_risk(self) -> None:
        spot = 100.0 * math.exp(-0.06)
        config = SpikeDetectorConfig(down_moves_raise_risk=True)
        result = compute_spike_adjustment(FLAT, spot, config, FIXED_NOW)
        assert result.adj_pts == 5.4

    def test_capped(self) -> None:
        result = compute_spike_adjustment(FLAT, 1000.0, SpikeDetectorConfig(), FIXED_NOW)
        assert result.diagnostics["z"] == 5.0
        assert 0 < result.adj_pts <= 6.0

    def test_smaller_cap(self) -> None:
        config = SpikeDetectorConfig(max_points=1.5)
        result = compute_spike_adjustment(FLAT, 1000.0, config, FIXED_NOW)
        assert result.adj_pts == 1.5

    def test_reference_is_last_completed_close(self) -> None:
        closes = FLAT[:-1] + [250.0]
        result = compute_spike_adjustment(closes, 101.0, SpikeDetectorConfig(), FIXED_NOW)
        assert result.diagnostics["ref_close"] == 100.0

    def test_disabled(self) -> None:
        result = compute_spike_adjustment(FLAT, 500.0, SpikeDetectorConfig(enabled=False), FIXED_NOW)
        assert (result.adj_pts, result.reason) == (0.0, "disabled")

    def test_insufficient_data(self) -> None:
        result = compute_spike_adjustment([100.0, 101.0], 102.0, SpikeDetectorConfig(), FIXED_NOW)
        assert (result.adj_pts, result.reason) == (0.0, "insufficient_data")

    def test_missing_spot(self) -> None:
        result = compute_spike_adjustment(FLAT, math.nan, SpikeDetectorConfig(), FIXED_NOW)
        assert result.reason == "insufficient_data"

    def test_invalid_prices(self) -> None:
        result = compute_spike_adjustment(FLAT, 0.0, SpikeDetectorConfig(), FIXED_NOW)
        assert (result.adj_pts, result.reason) == (0.0, "invalid_prices")


class TestCycle:
    """Tests for compute_cycle_adjustment."""

    def test_on_trend_within_normal_range(self) -> None:
        result = compute_cycle_adjustment(power_law_weekly(200), CycleConfig())
        assert result.adj_pts == 0.0
        assert result.reason == "within_normal_range"
        assert abs(result.diagnostics["deviation_pct"]) < 30
        assert result.diagnostics["n_weeks"] == 200

    def test_far_above_trend_raises_risk(self) -> None:
        result = compute_cycle_adjustment(power_law_weekly(200, last_multiplier=2.0), CycleConfig())
        assert 0 < result.adj_pts <= 2.0
        assert result.diagnostics["deviation_pct"] > 30
        assert result.reason is None

    def test_far_below_trend_lowers_risk(self) -> None:
        result = compute_cycle_adjustment(power_law_weekly(200, last_multiplier=0.4), CycleConfig())
        assert -2.0 <= result.adj_pts < 0

    def test_insufficient_history(self) -> None:
        result = compute_cycle_adjustment(power_law_weekly(MIN_WEEKLY_POINTS - 1), CycleConfig())
        assert (result.adj_pts, result.reason) == (0.0, "insufficient_data")
        assert result.diagnostics["n_weeks"] == MIN_WEEKLY_POINTS - 1

    def test_empty(self) -> None:
        empty = pd.DataFrame({"date": pd.to_datetime([], utc=True), "close": []})
        assert compute_cycle_adjustment(empty, CycleConfig()).reason == "insufficient_data"

    def test_disabled(self) -> None:
        result = compute_cycle_adjustment(power_law_weekly(200, 2.0), CycleConfig(enabled=False))
        assert (result.adj_pts, result.reason) == (0.0, "disabled")

    def test_history_days(self) -> None:
        assert cycle_history_days(CycleConfig(weekly_window_years=12)) == 4397


class TestLive:
    """Fetch failures never block the composite."""

    def test_cycle_data_error(self) -> None:
        with patch(
            "gscore_mcp.scoring.adjustments.fetch_daily_candles",
            AsyncMock(side_effect=ConnectionError("boom")),
        ):
            result, prov = asyncio.run(compute_cycle_adjustment_live(CycleConfig()))

        assert (result.adj_pts, result.reason) == (0.0, "data_error")
        assert result.diagnostics["error"] == "ConnectionError"
        assert prov == []

    def test_cycle_disabled_skips_fetch(self) -> None:
        fetch = AsyncMock()
        with patch("gscore_mcp.scoring.adjustments.fetch_daily_candles", fetch):
            result, _ = asyncio.run(compute_cycle_adjustment_live(CycleConfig(enabled=False)))
        assert result.reason == "disabled"
        fetch.assert_not_called()

    def test_spike_live(self) -> None:
        daily = pd.DataFrame(
            {
                "date": pd.date_range(end="2025-03-12", periods=70, freq="D", tz=timezone.utc),
                "close": FLAT,
            }
        )
        candle_prov = {"source": "yfinance", "attempts": 1}
        spot_prov = {"source": "yfinance", "attempts": 1}
        with patch(
            "gscore_mcp.scoring.adjustments.fetch_daily_candles",
            AsyncMock(return_value=(daily, candle_prov)),
        ), patch(
            "gscore_mcp.scoring.adjustments.fetch_spot",
            AsyncMock(return_value=(100.0 * math.exp(0.06), spot_prov)),
        ):
            result, prov = asyncio.run(compute_spike_adjustment_live(SpikeDetectorConfig()))

        assert result.adj_pts == 5.4
        assert prov == [candle_prov, spot_prov]

    def test_spike_spot_failure_keeps_candle_provenance(self) -> None:
        daily = pd.DataFrame({"date": pd.date_range("2025-01-01", periods=70, tz="UTC"), "close": FLAT})
        with patch(
            "gscore_mcp.scoring.adjustments.fetch_daily_candles",
            AsyncMock(return_value=(daily, {"source": "cache"})),
        ), patch(
            "gscore_mcp.scoring.adjustments.fetch_spot",
            AsyncMock(side_effect=ValueError("No spot price returned for BTC-USD")),
        ):
            result, prov = asyncio.run(compute_spike_adjustment_live(SpikeDetectorConfig()))

        assert (result.adj_pts, result.reason) == (0.0, "data_error")
        assert prov == [{"source": "cache"}]
