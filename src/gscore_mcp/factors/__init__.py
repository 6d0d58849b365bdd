"""Factor sources: an explicit set of implementations enumerated at startup."""

from pathlib import Path
from typing import TYPE_CHECKING

from gscore_mcp.factors.base import FactorSource, FeedFileSource
from gscore_mcp.factors.runner import collect_factor_results
from gscore_mcp.factors.trend_valuation import TrendValuationSource
from gscore_mcp.scoring.models import RiskConfig

if TYPE_CHECKING:
    from gscore_mcp.data.cache import CandleCache


def build_sources(
    config: RiskConfig,
    feed_dir: str | Path | None = None,
    cache: "CandleCache | None" = None,
) -> list[FactorSource]:
    """
    One source per enabled factor.

    trend_valuation is computed in-process from BTC candles; every other
    factor is read from its collector's feed file.
    """
    sources: list[FactorSource] = []
    for factor in config.enabled_factors:
        if factor.key == TrendValuationSource.key:
            sources.append(TrendValuationSource(cache))
        else:
            sources.append(FeedFileSource(factor.key, feed_dir))
    return sources


__all__ = [
    "FactorSource",
    "FeedFileSource",
    "TrendValuationSource",
    "build_sources",
    "collect_factor_results",
]
