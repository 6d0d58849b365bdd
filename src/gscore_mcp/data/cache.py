"""diskcache-backed candle cache and refresh throttle."""

import gzip
import hashlib
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any

import diskcache
import pandas as pd

from gscore_mcp.utils.ohlcv import df_to_csv
from gscore_mcp.utils.validators import CandleParams

logger = logging.getLogger(__name__)

_DEFAULT_CACHE_DIR = ".cache/gscore"


def _cache_root() -> str:
    return os.environ.get("CACHE_DIR", _DEFAULT_CACHE_DIR)


class CandleCache:
    """
    Cache stores exact candle CSV text, gzip-compressed, keyed by canonical URI.

    Daily candles only change once a day, so a short TTL keeps repeated
    refreshes off the network.
    """

    def __init__(self, cache_dir: str | None = None):
        if cache_dir is None:
            cache_dir = os.path.join(_cache_root(), "candles")
        self.cache: diskcache.Cache = diskcache.Cache(cache_dir)
        self._default_ttl = int(os.environ.get("CANDLE_CACHE_TTL", "900"))

    def store(
        self,
        params: CandleParams,
        df: pd.DataFrame,
        ttl: int | None = None,
    ) -> str:
        """
        Store gzipped CSV + metadata, return canonical URI.

        Args:
            params: Candle parameters (used to generate URI)
            df: Standardized DataFrame to cache
            ttl: Cache TTL in seconds (default: CANDLE_CACHE_TTL)

        Returns:
            Canonical URI for the cached data
        """
        uri = params.to_uri()

        csv_bytes = df_to_csv(df).encode("utf-8")
        csv_gz = gzip.compress(csv_bytes)

        entry: dict[str, Any] = {
            "csv_gz": csv_gz,
            "encoding": "gzip",
            "size_bytes": len(csv_bytes),
            "rows": len(df),
            "hash": hashlib.sha256(csv_bytes).hexdigest()[:16],
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }

        expire = ttl if ttl is not None else self._default_ttl
        self.cache.set(uri, entry, expire=expire)
        return uri

    def get_csv(self, uri: str) -> str | None:
        """Decompressed CSV text, or None if absent or expired."""
        entry = self.cache.get(uri)
        if not entry:
            return None
        return gzip.decompress(entry["csv_gz"]).decode("utf-8")

    def get_metadata(self, uri: str) -> dict[str, Any] | None:
        """Cache metadata without decompressing data."""
        entry = self.cache.get(uri)
        if not entry:
            return None
        return {
            "rows": entry["rows"],
            "size_bytes": entry["size_bytes"],
            "hash": entry["hash"],
            "stored_at": entry["stored_at"],
        }

    def clear(self) -> None:
        self.cache.clear()


class RefreshThrottle:
    """
    Minimum-interval gates for the refresh surface.

    allow() limits how often one caller may hit the cached GET path;
    acquire_write() limits how often any caller may force a recompute.
    Both are backed by expiring diskcache keys, so limits survive restarts
    and are shared by every worker using the same cache directory.
    """

    WRITE_KEY = "refresh:write"

    def __init__(self, cache_dir: str | None = None):
        if cache_dir is None:
            cache_dir = os.path.join(_cache_root(), "throttle")
        self.cache: diskcache.Cache = diskcache.Cache(cache_dir)

    def _gate(self, key: str, window_s: float) -> tuple[bool, int]:
        if window_s <= 0:
            return True, 0
        now = time.time()
        # add() only succeeds when the key is absent or expired
        if self.cache.add(key, now, expire=window_s):
            return True, 0
        started = self.cache.get(key)
        if started is None:
            # Expired between add() and get()
            self.cache.set(key, now, expire=window_s)
            return True, 0
        retry_after = max(1, int(round(window_s - (now - float(started)))))
        return False, retry_after

    def allow(self, caller: str, window_s: float) -> tuple[bool, int]:
        """
        Per-caller rate limit.

        Returns:
            (allowed, retry_after_seconds)
        """
        allowed, retry_after = self._gate(f"refresh:caller:{caller}", window_s)
        if not allowed:
            logger.info(f"Throttle: caller {caller} limited, retry in {retry_after}s")
        return allowed, retry_after

    def acquire_write(self, min_interval_s: float) -> tuple[bool, int]:
        """
        Global minimum interval between forced recomputes.

        Returns:
            (allowed, retry_after_seconds)
        """
        allowed, retry_after = self._gate(self.WRITE_KEY, min_interval_s)
        if not allowed:
            logger.info(f"Throttle: forced recompute limited, retry in {retry_after}s")
        return allowed, retry_after

    def release_write(self) -> None:
        """Drop the write gate (a failed recompute should not block the next one)."""
        self.cache.delete(self.WRITE_KEY)

    def clear(self) -> None:
        self.cache.clear()
