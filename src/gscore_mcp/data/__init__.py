"""Data layer: BTC prices, caches and snapshot persistence."""

from gscore_mcp.data.btc_client import (
    BTCDataRetryError,
    RetryResult,
    ServerShuttingDownError,
    fetch_daily_candles,
    fetch_spot,
    shutdown_executor,
)
from gscore_mcp.data.cache import CandleCache, RefreshThrottle
from gscore_mcp.data.store import SnapshotStore, build_history_row, compute_factor_deltas

__all__ = [
    # yfinance
    "BTCDataRetryError",
    "RetryResult",
    "ServerShuttingDownError",
    "fetch_daily_candles",
    "fetch_spot",
    "shutdown_executor",
    # Cache
    "CandleCache",
    "RefreshThrottle",
    # Store
    "SnapshotStore",
    "build_history_row",
    "compute_factor_deltas",
]
