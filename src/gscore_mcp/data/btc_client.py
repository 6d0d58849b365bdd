"""Async BTC price client (yfinance) with bounded concurrency and retry logic."""

import asyncio
import logging
import math
import os
import random
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

import pandas as pd
import yfinance as yf
from requests.exceptions import HTTPError

from gscore_mcp.scoring.models import GScoreError
from gscore_mcp.utils.ohlcv import csv_to_df, standardize_candles
from gscore_mcp.utils.validators import CandleParams, to_utc_iso

if TYPE_CHECKING:
    from gscore_mcp.data.cache import CandleCache

logger = logging.getLogger(__name__)

BTC_SYMBOL = "BTC-USD"

# Bounded concurrency for yfinance calls
_max_workers = int(os.environ.get("BTC_MAX_WORKERS", "4"))
_executor = ThreadPoolExecutor(max_workers=_max_workers)
_fetch_semaphore = asyncio.Semaphore(_max_workers)

# Retry configuration
_max_retries = int(os.environ.get("BTC_MAX_RETRIES", "3"))
_base_delay = float(os.environ.get("BTC_BASE_DELAY", "1.0"))  # seconds
_max_delay = float(os.environ.get("BTC_MAX_DELAY", "30.0"))  # seconds

# Shutdown coordination
shutdown_event = asyncio.Event()

T = TypeVar("T")


class ServerShuttingDownError(GScoreError):
    """Raised when server is shutting down."""

    pass


class BTCDataRetryError(GScoreError):
    """Raised when yfinance fails after all retries."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


def _is_retryable_error(error: Exception) -> tuple[bool, int]:
    """
    Check if an error is retryable (transient).

    Returns:
        Tuple of (is_retryable, max_retries_for_this_error)
    """
    if (
        isinstance(error, HTTPError)
        and hasattr(error, "response")
        and error.response is not None
    ):
        status_code = error.response.status_code
        if status_code == 401:
            # Invalid crumb rarely recovers with more retries
            return (True, 1)
        if status_code == 429 or 500 <= status_code < 600:
            return (True, _max_retries)

    error_str = str(error).lower()

    if "401" in error_str or "invalid crumb" in error_str:
        return (True, 1)

    retryable_patterns = [
        "rate limit",
        "too many requests",
        "connection",
        "timeout",
        "temporary",
    ]
    if any(pattern in error_str for pattern in retryable_patterns):
        return (True, _max_retries)

    return (False, 0)


def _calculate_backoff(attempt: int) -> float:
    """Calculate delay with exponential backoff and jitter."""
    delay = _base_delay * (2**attempt)
    # Jitter of +/-25%
    jitter = delay * 0.25 * (2 * random.random() - 1)
    return min(delay + jitter, _max_delay)


@dataclass
class RetryAttempt:
    """Record of a single retry attempt for provenance tracking."""

    attempt: int
    ok: bool
    error: str | None = None
    backoff_s: float | None = None


@dataclass
class RetryResult:
    """Result of a retry operation with provenance tracking."""

    result: Any
    attempts: int
    total_backoff_seconds: float
    source: str = "yfinance"
    retry_trace: list[RetryAttempt] | None = None

    def to_provenance(self) -> dict[str, Any]:
        """Convert to provenance dict for the snapshot provenance list."""
        prov: dict[str, Any] = {
            "source": self.source,
            "attempts": self.attempts,
            "total_backoff_seconds": self.total_backoff_seconds,
        }
        if self.retry_trace:
            prov["retry_trace"] = [
                {
                    "attempt": t.attempt,
                    "ok": t.ok,
                    **({"error": t.error} if t.error else {}),
                    **({"backoff_s": t.backoff_s} if t.backoff_s else {}),
                }
                for t in self.retry_trace[-3:]
            ]
        return prov


async def _retry_with_backoff(
    operation_name: str,
    sync_func: Callable[[], T],
    max_retries: int = _max_retries,
) -> RetryResult:
    """
    Execute a synchronous function in the executor with retry logic.

    Args:
        operation_name: Name for logging (e.g., "fetch_daily_candles(90)")
        sync_func: Synchronous function to execute
        max_retries: Maximum number of retry attempts

    Returns:
        RetryResult with result and provenance info

    Raises:
        BTCDataRetryError: If all retries exhausted
        ServerShuttingDownError: If server is shutting down
    """
    last_error: Exception | None = None
    total_backoff = 0.0
    retry_trace: list[RetryAttempt] = []

    for attempt in range(max_retries + 1):
        if shutdown_event.is_set():
            raise ServerShuttingDownError("Server is shutting down")

        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(_executor, sync_func)
            retry_trace.append(RetryAttempt(attempt=attempt + 1, ok=True))
            return RetryResult(
                result=result,
                attempts=attempt + 1,
                total_backoff_seconds=round(total_backoff, 2),
                retry_trace=retry_trace if len(retry_trace) > 1 else None,
            )
        except Exception as e:
            last_error = e
            retry_trace.append(RetryAttempt(attempt=attempt + 1, ok=False, error=type(e).__name__))

            is_retryable, error_max_retries = _is_retryable_error(e)
            if not is_retryable:
                raise

            effective_max_retries = min(max_retries, error_max_retries)
            if attempt >= effective_max_retries:
                logger.warning(
                    f"{operation_name}: Failed after {attempt + 1} attempts "
                    f"(limit={effective_max_retries + 1}). Last error: {e}"
                )
                raise BTCDataRetryError(
                    f"Failed after {attempt + 1} attempts: {e}",
                    last_error=last_error,
                ) from e

            delay = _calculate_backoff(attempt)
            total_backoff += delay
            retry_trace[-1].backoff_s = round(delay, 2)
            logger.info(
                f"{operation_name}: Attempt {attempt + 1} failed ({e}). "
                f"Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)

    raise BTCDataRetryError(
        f"Failed after {max_retries + 1} attempts",
        last_error=last_error,
    )


async def fetch_daily_candles(
    params: CandleParams,
    cache: "CandleCache | None" = None,
) -> tuple[pd.DataFrame, dict[str, Any]]:
    """
    Fetch standardized daily candles, oldest first.

    Serves from the candle cache when a live entry exists; fresh downloads
    are written back to it.

    Args:
        params: Candle fetch parameters
        cache: Optional candle cache

    Returns:
        Tuple of (DataFrame, provenance_dict)

    Raises:
        ServerShuttingDownError: If server is shutting down
        BTCDataRetryError: If all retries exhausted for retryable errors
        ValueError: If no data returned
    """
    if shutdown_event.is_set():
        raise ServerShuttingDownError("Server is shutting down")

    if cache is not None:
        csv_text = cache.get_csv(params.to_uri())
        if csv_text is not None:
            meta = cache.get_metadata(params.to_uri()) or {}
            logger.debug(f"fetch_daily_candles({params.days}): cache hit")
            return csv_to_df(csv_text), {
                "source": "cache",
                "uri": params.to_uri(),
                "stored_at": meta.get("stored_at"),
            }

    def _fetch() -> pd.DataFrame:
        df = yf.download(**params.to_yf_kwargs())
        if df.empty:
            raise ValueError(f"No data returned for {params.symbol}")
        return standardize_candles(df)

    async with _fetch_semaphore:
        retry_result = await _retry_with_backoff(
            f"fetch_daily_candles({params.days})",
            _fetch,
        )

    df = retry_result.result
    if cache is not None:
        cache.store(params, df)
    return df, retry_result.to_provenance()


async def fetch_spot(symbol: str = BTC_SYMBOL) -> tuple[float, dict[str, Any]]:
    """
    Fetch the current spot price.

    Returns:
        Tuple of (price, provenance_dict)

    Raises:
        ServerShuttingDownError: If server is shutting down
        BTCDataRetryError: If all retries exhausted for retryable errors
        ValueError: If no usable price returned
    """
    if shutdown_event.is_set():
        raise ServerShuttingDownError("Server is shutting down")

    def _fetch() -> float:
        ticker = yf.Ticker(symbol)
        price = ticker.fast_info.last_price
        if price is None or not math.isfinite(float(price)) or float(price) <= 0:
            raise ValueError(f"No spot price returned for {symbol}")
        return float(price)

    async with _fetch_semaphore:
        retry_result = await _retry_with_backoff(f"fetch_spot({symbol})", _fetch)

    prov = retry_result.to_provenance()
    prov["as_of"] = to_utc_iso(datetime.now(timezone.utc))
    return retry_result.result, prov


async def shutdown_executor() -> None:
    """Cleanup on server shutdown."""
    shutdown_event.set()
    _executor.shutdown(wait=False, cancel_futures=True)
