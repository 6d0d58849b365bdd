"""Validation utilities and parameter classes."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

VALID_SYMBOLS = {"BTC-USD"}


@dataclass(frozen=True)
class CandleParams:
    """Immutable daily-candle fetch parameters. Used for cache key + fetch."""

    days: int
    symbol: str = "BTC-USD"

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", self.symbol.upper().strip())

        if self.symbol not in VALID_SYMBOLS:
            raise ValueError(f"Invalid symbol '{self.symbol}'. Must be one of: {VALID_SYMBOLS}")
        if self.days < 3:
            raise ValueError(f"Need at least 3 days of candles, got {self.days}")

    def to_uri(self) -> str:
        """Canonical URI for caching."""
        return f"candles://{self.symbol}/1d/{self.days}"

    def to_yf_kwargs(self) -> dict[str, Any]:
        """Kwargs for yf.download()."""
        # Arbitrary day counts are not valid yfinance periods; use a start date
        start = datetime.now(timezone.utc) - timedelta(days=self.days)
        return {
            "tickers": self.symbol,
            "start": start.strftime("%Y-%m-%d"),
            "interval": "1d",
            "auto_adjust": True,
            "progress": False,
        }


def parse_utc(value: Any) -> datetime | None:
    """
    Parse an ISO-8601 timestamp (or datetime) into an aware UTC datetime.

    Naive inputs are assumed to be UTC. Returns None for missing or
    unparseable values rather than raising.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_iso(dt: datetime) -> str:
    """Format as second-precision ISO string with a Z suffix."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def coerce_score(value: Any) -> float | None:
    """
    Coerce a factor score to float.

    Returns None for missing values; NaN for values that are present but not
    usable numbers (the staleness classifier excludes those explicitly).
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan
