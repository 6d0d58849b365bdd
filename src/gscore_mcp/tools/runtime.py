"""Process-wide collaborators shared by the tools and the HTTP route."""

import asyncio
import os
from collections.abc import Callable
from dataclasses import dataclass, field

from gscore_mcp.data.cache import CandleCache, RefreshThrottle
from gscore_mcp.data.store import DEFAULT_HISTORY_MIN_HOURS, SnapshotStore
from gscore_mcp.factors import FactorSource, build_sources
from gscore_mcp.scoring.config import ConfigProvider
from gscore_mcp.scoring.models import RiskConfig


@dataclass
class Runtime:
    """
    Everything one scoring process needs, passed explicitly to the tools.

    The lock serializes refreshes within the process so the latest snapshot
    and the history log each have a single writer.
    """

    provider: ConfigProvider
    store: SnapshotStore
    throttle: RefreshThrottle
    candle_cache: CandleCache | None = None
    feed_dir: str | None = None
    factor_timeout_s: float = 30.0
    history_min_hours: float = DEFAULT_HISTORY_MIN_HOURS
    refresh_token: str | None = None
    rate_limit_s: float = 60.0
    min_write_interval_s: float = 30.0
    sources_factory: Callable[[RiskConfig], list[FactorSource]] | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    def from_env(cls) -> "Runtime":
        return cls(
            provider=ConfigProvider(),
            store=SnapshotStore(),
            throttle=RefreshThrottle(),
            candle_cache=CandleCache(),
            feed_dir=os.environ.get("FACTOR_FEED_DIR"),
            factor_timeout_s=float(os.environ.get("FACTOR_TIMEOUT_SECONDS", "30")),
            history_min_hours=float(os.environ.get("HISTORY_MIN_HOURS", str(DEFAULT_HISTORY_MIN_HOURS))),
            refresh_token=os.environ.get("REFRESH_TOKEN") or None,
            rate_limit_s=float(os.environ.get("REFRESH_RATE_LIMIT_SECONDS", "60")),
            min_write_interval_s=float(os.environ.get("REFRESH_MIN_INTERVAL_SECONDS", "30")),
        )

    def sources(self, config: RiskConfig) -> list[FactorSource]:
        if self.sources_factory is not None:
            return self.sources_factory(config)
        return build_sources(config, self.feed_dir, self.candle_cache)


_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """Shared runtime, built from the environment on first use."""
    global _runtime
    if _runtime is None:
        _runtime = Runtime.from_env()
    return _runtime


def set_runtime(runtime: Runtime | None) -> None:
    """Replace the shared runtime (None resets to lazy construction)."""
    global _runtime
    _runtime = runtime
