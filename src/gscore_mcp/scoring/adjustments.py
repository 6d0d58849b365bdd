"""Bounded additive adjustments: slow cycle and fast spike.

Both are enhancements, never blocking dependencies: every path returns an
AdjustmentResult, with adj_pts = 0 and a reason when the adjustment is
disabled, inactive or lacks data.
"""

import logging
import math
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from gscore_mcp.data.btc_client import fetch_daily_candles, fetch_spot
from gscore_mcp.scoring.models import AdjustmentResult, CycleConfig, SpikeDetectorConfig
from gscore_mcp.utils.ohlcv import daily_to_weekly
from gscore_mcp.utils.transforms import is_finite, ols, round_half_up, sample_std
from gscore_mcp.utils.validators import CandleParams, to_utc_iso

if TYPE_CHECKING:
    from gscore_mcp.data.cache import CandleCache

logger = logging.getLogger(__name__)

# A year of weekly closes before the trend fit is meaningful
MIN_WEEKLY_POINTS = 52
# Days of daily candles the spike detector always asks for
MIN_SPIKE_CANDLE_DAYS = 64


def _cap(value: float, max_points: float) -> float:
    return max(-max_points, min(max_points, value))


# ============================================================================
# CYCLE
# ============================================================================


def cycle_history_days(config: CycleConfig) -> int:
    """Daily candles needed to cover the cycle regression window."""
    return int(config.weekly_window_years * 365.25) + 14


def compute_cycle_adjustment(weekly: pd.DataFrame, config: CycleConfig) -> AdjustmentResult:
    """
    Cycle adjustment from the residual of a power-law trend.

    Fits ln(close) = a + b * ln(days since anchor) over the configured window
    of weekly closes. The latest residual, as a fraction, must exceed the
    deviation threshold before any points are applied; the points are then
    max_points * tanh(z / z_scale) of the residual's z-score.

    Args:
        weekly: Weekly closes with columns date (UTC) and close
        config: Cycle settings

    Returns:
        AdjustmentResult capped at +/-max_points, rounded to 0.1
    """
    source = f"power-law OLS over weekly closes ({config.weekly_window_years}y window)"
    if not config.enabled:
        return AdjustmentResult.noop("disabled", source="disabled")
    if weekly is None or weekly.empty:
        return AdjustmentResult.noop("insufficient_data", source=source)

    anchor = pd.Timestamp(config.anchor, tz="UTC")
    data = weekly.dropna(subset=["date", "close"])
    data = data[data["close"] > 0].sort_values("date")
    if data.empty:
        return AdjustmentResult.noop("insufficient_data", source=source)

    window_start = data["date"].iloc[-1] - pd.Timedelta(days=365.25 * config.weekly_window_years)
    data = data[data["date"] >= window_start]

    days = (data["date"] - anchor).dt.total_seconds() / 86400
    data = data[days > 0]
    days = days[days > 0]
    if len(data) < MIN_WEEKLY_POINTS:
        return AdjustmentResult.noop(
            "insufficient_data",
            source=source,
            diagnostics={"n_weeks": int(len(data))},
        )

    xs = np.log(days.to_numpy(dtype=float))
    ys = np.log(data["close"].to_numpy(dtype=float))
    fit = ols(xs.tolist(), ys.tolist())
    last_utc = to_utc_iso(data["date"].iloc[-1].to_pydatetime())
    if fit is None:
        return AdjustmentResult.noop("regression_failed", last_utc=last_utc, source=source)

    intercept, slope = fit
    residuals = ys - (intercept + slope * xs)
    last_resid = float(residuals[-1])
    deviation = math.exp(last_resid) - 1
    std = sample_std(residuals.tolist())
    z = (last_resid - float(residuals.mean())) / std if is_finite(std) and std > 0 else 0.0
    z = max(-config.z_clip, min(config.z_clip, z))

    diagnostics: dict[str, Any] = {
        "residual_z": round_half_up(z, 3),
        "deviation_pct": round_half_up(deviation * 100, 2),
        "price": float(data["close"].iloc[-1]),
        "trend_price": round_half_up(math.exp(intercept + slope * float(xs[-1])), 2),
        "slope": slope,
        "intercept": intercept,
        "n_weeks": int(len(data)),
    }

    if abs(deviation) < config.deviation_threshold:
        return AdjustmentResult(
            adj_pts=0.0,
            last_utc=last_utc,
            source=source,
            reason="within_normal_range",
            diagnostics=diagnostics,
        )

    adj = _cap(config.max_points * math.tanh(z / config.z_scale), config.max_points)
    return AdjustmentResult(
        adj_pts=round_half_up(adj, 1),
        last_utc=last_utc,
        source=source,
        diagnostics=diagnostics,
    )


async def compute_cycle_adjustment_live(
    config: CycleConfig,
    cache: "CandleCache | None" = None,
) -> tuple[AdjustmentResult, list[dict[str, Any]]]:
    """
    Fetch weekly closes and compute the cycle adjustment.

    Returns:
        (adjustment, provenance entries); any fetch failure degrades to
        adj_pts = 0 with reason data_error
    """
    if not config.enabled:
        return AdjustmentResult.noop("disabled", source="disabled"), []
    try:
        daily, prov = await fetch_daily_candles(CandleParams(days=cycle_history_days(config)), cache)
        result = compute_cycle_adjustment(daily_to_weekly(daily), config)
        return result, [prov]
    except Exception as e:
        logger.warning(f"Cycle adjustment: data error, applying no adjustment ({e})")
        return AdjustmentResult.noop(
            "data_error",
            last_utc=to_utc_iso(datetime.now(timezone.utc)),
            source="error",
            diagnostics={"error": type(e).__name__},
        ), []


# ============================================================================
# SPIKE
# ============================================================================


def ewma_sigma(returns: Sequence[float], lam: float, floor: float) -> float:
    """
    EWMA volatility of daily log returns, floored.

    The variance is seeded with the mean squared return, then smoothed
    v = lam * v + (1 - lam) * r^2 over the series.
    """
    if not returns:
        return floor
    v = sum(r * r for r in returns) / len(returns)
    for r in returns:
        v = lam * v + (1 - lam) * r * r
    return max(math.sqrt(v), floor)


def compute_spike_adjustment(
    closes: Sequence[float],
    spot: float,
    config: SpikeDetectorConfig,
    now: datetime | None = None,
) -> AdjustmentResult:
    """
    Spike adjustment from the 1-day return z-score.

    Args:
        closes: Daily closes, oldest first; the last entry is the current
            (incomplete) day, so closes[-2] is the last completed close
        spot: Current spot price
        config: Spike detector settings
        now: Evaluation time for last_utc

    Returns:
        AdjustmentResult capped at +/-max_points, rounded to 0.1; exactly 0
        unless |z| exceeds activation_z
    """
    last_utc = to_utc_iso(now or datetime.now(timezone.utc))
    source = f"EWMA({config.lookback_days}d, lambda={config.ewma_lambda}) over daily returns"
    if not config.enabled:
        return AdjustmentResult.noop("disabled", last_utc=last_utc, source="disabled")

    closes = [float(c) for c in closes if is_finite(c)]
    if len(closes) < 3 or not is_finite(spot):
        return AdjustmentResult.noop(
            "insufficient_data",
            last_utc=last_utc,
            source=source,
            diagnostics={"sigma": config.sigma_floor},
        )

    ref_close = closes[-2]
    if ref_close <= 0 or spot <= 0:
        return AdjustmentResult.noop(
            "invalid_prices",
            last_utc=last_utc,
            source=source,
            diagnostics={"ref_close": ref_close, "spot": spot},
        )

    r_1d = math.log(spot / ref_close)
    lookback = min(config.lookback_days + 1, len(closes) - 1)
    returns = [
        math.log(closes[i] / closes[i - 1])
        for i in range(len(closes) - lookback, len(closes))
        if closes[i - 1] > 0 and closes[i] > 0
    ]
    sigma = ewma_sigma(returns, config.ewma_lambda, config.sigma_floor)
    z = max(-config.z_clip, min(config.z_clip, r_1d / sigma))

    diagnostics: dict[str, Any] = {
        "r_1d": r_1d,
        "sigma": sigma,
        "z": z,
        "ref_close": ref_close,
        "spot": spot,
    }

    if abs(z) <= config.activation_z:
        return AdjustmentResult(
            adj_pts=0.0,
            last_utc=last_utc,
            source=source,
            reason="below_activation",
            diagnostics=diagnostics,
        )

    adj = math.tanh(z / config.z_scale) * config.max_points
    if config.down_moves_raise_risk and r_1d < 0:
        adj = abs(adj)
    adj = _cap(adj, config.max_points)
    return AdjustmentResult(
        adj_pts=round_half_up(adj, 1),
        last_utc=last_utc,
        source=source,
        diagnostics=diagnostics,
    )


async def compute_spike_adjustment_live(
    config: SpikeDetectorConfig,
    cache: "CandleCache | None" = None,
) -> tuple[AdjustmentResult, list[dict[str, Any]]]:
    """
    Fetch candles and spot, then compute the spike adjustment.

    Returns:
        (adjustment, provenance entries); any fetch failure degrades to
        adj_pts = 0 with reason data_error
    """
    if not config.enabled:
        return compute_spike_adjustment([], math.nan, config), []
    prov: list[dict[str, Any]] = []
    try:
        days = max(3 + config.lookback_days, MIN_SPIKE_CANDLE_DAYS)
        daily, candle_prov = await fetch_daily_candles(CandleParams(days=days), cache)
        prov.append(candle_prov)
        spot, spot_prov = await fetch_spot()
        prov.append(spot_prov)
        return compute_spike_adjustment(daily["close"].tolist(), spot, config), prov
    except Exception as e:
        logger.warning(f"Spike adjustment: data error, applying no adjustment ({e})")
        return AdjustmentResult.noop(
            "data_error",
            last_utc=to_utc_iso(datetime.now(timezone.utc)),
            source="error",
            diagnostics={"error": type(e).__name__},
        ), prov
