"""Pytest configuration and fixtures."""

import math
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import numpy as np
import pandas as pd
import pytest

from gscore_mcp.data.cache import CandleCache, RefreshThrottle
from gscore_mcp.data.store import SnapshotStore
from gscore_mcp.scoring.config import ConfigProvider
from gscore_mcp.scoring.models import AdjustmentResult, FactorResult, FactorSummary
from gscore_mcp.tools.runtime import Runtime

# A Wednesday, so no weekend grace applies
FIXED_NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class FakeSource:
    """Factor source returning a fixed result (or raising)."""

    def __init__(self, key: str, result: FactorResult | None = None, error: Exception | None = None):
        self.key = key
        self._result = result
        self._error = error

    async def compute(self) -> FactorResult:
        if self._error is not None:
            raise self._error
        return self._result


@pytest.fixture
def provider() -> ConfigProvider:
    """Strict provider that ignores the process environment."""
    return ConfigProvider(strict=True, env={})


@pytest.fixture
def config(provider):
    return provider.get_config()


@pytest.fixture
def fresh_summaries() -> list[FactorSummary]:
    """Three fresh factors with weights 40/30/30."""
    return [
        FactorSummary(key="a", label="A", pillar="liquidity", weight=40, score=80, status="fresh"),
        FactorSummary(key="b", label="B", pillar="momentum", weight=30, score=60, status="fresh"),
        FactorSummary(key="c", label="C", pillar="leverage", weight=30, score=40, status="fresh"),
    ]


@pytest.fixture
def factor_scores() -> dict[str, float]:
    """Scores for every default factor."""
    return {
        "trend_valuation": 70,
        "onchain": 50,
        "stablecoins": 40,
        "net_liquidity": 60,
        "etf_flows": 30,
        "term_leverage": 55,
        "macro_overlay": 45,
        "social_interest": 65,
    }


@pytest.fixture
def fresh_results(factor_scores) -> dict[str, FactorResult]:
    """Results stamped one hour ago, fresh under every default rule."""
    stamp = iso(datetime.now(timezone.utc) - timedelta(hours=1))
    return {
        key: FactorResult(score=score, last_utc=stamp, source=f"feed:{key}")
        for key, score in factor_scores.items()
    }


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "data")


@pytest.fixture
def throttle(tmp_path) -> RefreshThrottle:
    t = RefreshThrottle(str(tmp_path / "throttle"))
    yield t
    t.cache.close()


@pytest.fixture
def candle_cache(tmp_path) -> CandleCache:
    c = CandleCache(str(tmp_path / "candles"))
    yield c
    c.cache.close()


@pytest.fixture
def make_runtime(provider, store, throttle):
    """Build a Runtime whose factor sources are the given results."""

    def _make(results: dict[str, FactorResult], **kwargs) -> Runtime:
        def factory(config):
            return [FakeSource(key, result) for key, result in results.items()]

        return Runtime(
            provider=kwargs.pop("provider", provider),
            store=store,
            throttle=throttle,
            sources_factory=factory,
            factor_timeout_s=kwargs.pop("factor_timeout_s", 5.0),
            **kwargs,
        )

    return _make


@pytest.fixture
def daily_candles() -> pd.DataFrame:
    """Standardized daily candles: 800 days of a gently rising random walk."""
    rng = np.random.default_rng(42)
    n = 800
    returns = rng.normal(0.001, 0.02, n)
    close = 20000 * np.exp(np.cumsum(returns))
    dates = pd.date_range(end="2025-03-12", periods=n, freq="D", tz="UTC")
    return pd.DataFrame(
        {
            "date": dates,
            "open": close,
            "high": close * 1.01,
            "low": close * 0.99,
            "close": close,
            "volume": [1e9] * n,
        }
    )


def power_law_weekly(n_weeks: int, last_multiplier: float = 1.0) -> pd.DataFrame:
    """Weekly closes exactly on a power-law trend, last close scaled."""
    dates = pd.date_range(end="2025-03-09", periods=n_weeks, freq="W-SUN", tz="UTC")
    anchor = pd.Timestamp("2010-07-18", tz="UTC")
    days = (dates - anchor).days.to_numpy(dtype=float)
    # Small deterministic wobble keeps the residual std nonzero
    wobble = np.array([0.02 * math.sin(i) for i in range(n_weeks)])
    close = np.exp(-38.3 + 5.8 * np.log(days) + wobble)
    close[-1] *= last_multiplier
    return pd.DataFrame({"date": dates, "close": close})


@pytest.fixture
def raw_yf_df() -> pd.DataFrame:
    """Daily frame shaped like yf.download output for one ticker."""
    return pd.DataFrame(
        {
            "Date": pd.date_range("2024-01-01", periods=10, freq="D"),
            "Open": [100.0, 101.0, 102.0, 101.5, 103.0, 104.0, 103.5, 105.0, 106.0, 105.5],
            "High": [101.0, 102.5, 103.0, 102.5, 104.5, 105.5, 105.0, 106.5, 107.0, 106.5],
            "Low": [99.5, 100.5, 101.0, 100.5, 102.0, 103.0, 102.5, 104.0, 105.0, 104.5],
            "Close": [100.5, 102.0, 101.5, 102.0, 104.0, 103.5, 104.5, 106.0, 105.5, 106.0],
            "Adj Close": [100.0, 101.5, 101.0, 101.5, 103.5, 103.0, 104.0, 105.5, 105.0, 105.5],
            "Volume": [1000000] * 10,
        }
    ).set_index("Date")


def adjustment(pts: float, reason: str | None = None) -> tuple[AdjustmentResult, list]:
    """A live-adjustment return value: (result, provenance)."""
    return AdjustmentResult(adj_pts=pts, last_utc=iso(datetime.now(timezone.utc)), source="test", reason=reason), []


@pytest.fixture
def adjustments():
    """Patch both live adjustments; tests set .return_value to change them."""
    cycle = AsyncMock(return_value=adjustment(0.0, "within_normal_range"))
    spike = AsyncMock(return_value=adjustment(0.0, "below_activation"))
    with patch("gscore_mcp.tools.refresh.compute_cycle_adjustment_live", cycle), patch(
        "gscore_mcp.tools.refresh.compute_spike_adjustment_live", spike
    ):
        yield cycle, spike
