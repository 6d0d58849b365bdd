"""Trend & valuation factor computed from BTC daily candles.

Signals:
- Mayer Multiple (price / 200d SMA), 40%
- Long MA ratio (price / 730d SMA, or 365d on shorter history), 40%
- RSI(14), 20%

Each signal's latest value is ranked against its own trailing window; the
two multiples are inverted before the logistic mapping, RSI is not.
"""

import logging
from typing import TYPE_CHECKING, Any

import pandas as pd

from gscore_mcp.data.btc_client import fetch_daily_candles
from gscore_mcp.scoring.models import FactorResult
from gscore_mcp.utils.transforms import (
    LOGISTIC_K,
    calculate_rsi,
    clamp,
    is_finite,
    logistic01,
    percentile_rank,
    round_half_up,
)
from gscore_mcp.utils.validators import CandleParams, to_utc_iso

if TYPE_CHECKING:
    from gscore_mcp.data.cache import CandleCache

logger = logging.getLogger(__name__)

KEY = "trend_valuation"
HISTORY_DAYS = 1900
MIN_CLOSES = 210
MAYER_WINDOW = 200
PERCENTILE_WINDOW = 1095  # 3 years of daily values

BLEND = {"mayer": 0.4, "long_ma": 0.4, "rsi": 0.2}


def _window_rank(series: pd.Series) -> float:
    values = series.dropna()
    if values.empty:
        return float("nan")
    values = values.iloc[-PERCENTILE_WINDOW:]
    return percentile_rank(values.tolist(), float(values.iloc[-1]))


def score_trend_valuation(df: pd.DataFrame) -> FactorResult:
    """
    Score trend and valuation from standardized daily candles.

    Args:
        df: Standardized candles (date, close, ...) oldest first

    Returns:
        FactorResult; failed with insufficient_data below MIN_CLOSES closes
    """
    data = df.dropna(subset=["close"])
    data = data[data["close"] > 0]
    if len(data) < MIN_CLOSES:
        return FactorResult.failed("insufficient_data", source="yfinance:BTC-USD")

    close = data["close"].astype(float).reset_index(drop=True)
    long_n = 730 if len(close) >= 730 else 365 if len(close) >= 365 else 300

    sma200 = close.rolling(MAYER_WINDOW, min_periods=MAYER_WINDOW).mean()
    mayer = close / sma200
    long_ratio = close / close.rolling(long_n, min_periods=long_n).mean()
    rsi = calculate_rsi(close, 14)

    pr_mayer = _window_rank(mayer)
    pr_long = _window_rank(long_ratio)
    pr_rsi = _window_rank(rsi)
    if not all(is_finite(p) for p in (pr_mayer, pr_long, pr_rsi)):
        return FactorResult.failed("insufficient_data", source="yfinance:BTC-USD")

    s_mayer = round_half_up(100 * logistic01(1 - clamp(pr_mayer, 0, 1), LOGISTIC_K))
    s_long = round_half_up(100 * logistic01(1 - clamp(pr_long, 0, 1), LOGISTIC_K))
    s_rsi = round_half_up(100 * logistic01(clamp(pr_rsi, 0, 1), LOGISTIC_K))
    score = round_half_up(
        s_mayer * BLEND["mayer"] + s_long * BLEND["long_ma"] + s_rsi * BLEND["rsi"]
    )

    price = float(close.iloc[-1])
    last_sma = float(sma200.iloc[-1])
    dist = (price - last_sma) / last_sma
    last_utc = to_utc_iso(data["date"].iloc[-1].to_pydatetime())

    details: list[dict[str, Any]] = [
        {"label": "200d SMA status", "value": "above" if price > last_sma else "below"},
        {"label": "Distance to 200d SMA", "value": f"{dist * 100:.2f}%"},
        {"label": "Mayer Multiple", "value": f"{float(mayer.iloc[-1]):.3f}"},
        {"label": f"{long_n}d MA ratio", "value": f"{float(long_ratio.iloc[-1]):.3f}"},
        {"label": "RSI(14)", "value": f"{float(rsi.iloc[-1]):.1f}"},
        {"label": "RSI pct (3y)", "value": f"{pr_rsi * 100:.0f}%"},
    ]
    return FactorResult(
        score=score,
        last_utc=last_utc,
        source="yfinance:BTC-USD",
        details=tuple(details),
    )


class TrendValuationSource:
    key = KEY

    def __init__(self, cache: "CandleCache | None" = None):
        self.cache = cache

    def __repr__(self) -> str:
        return "TrendValuationSource()"

    async def compute(self) -> FactorResult:
        df, prov = await fetch_daily_candles(CandleParams(days=HISTORY_DAYS), self.cache)
        result = score_trend_valuation(df)
        logger.debug(f"Trend valuation: score={result.score} ({len(df)} candles)")
        return FactorResult(
            score=result.score,
            last_utc=result.last_utc,
            source=result.source,
            details=result.details,
            reason=result.reason,
            provenance=(prov,),
        )
