"""Tests for the BTC price client retry and cache behavior."""

import asyncio
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
from requests.exceptions import HTTPError

from gscore_mcp.data import btc_client
from gscore_mcp.data.btc_client import (
    BTCDataRetryError,
    RetryAttempt,
    RetryResult,
    _is_retryable_error,
    fetch_daily_candles,
    fetch_spot,
)
from gscore_mcp.utils.validators import CandleParams


def http_error(status: int) -> HTTPError:
    response = MagicMock()
    response.status_code = status
    return HTTPError(f"{status} error", response=response)


@pytest.fixture(autouse=True)
def no_backoff():
    """Skip real sleeps between retries."""
    with patch.object(btc_client, "_calculate_backoff", return_value=0.0):
        yield


class TestRetryable:
    """Tests for _is_retryable_error."""

    def test_rate_limited(self) -> None:
        assert _is_retryable_error(http_error(429)) == (True, btc_client._max_retries)

    def test_server_error(self) -> None:
        assert _is_retryable_error(http_error(503))[0]

    def test_invalid_crumb_single_retry(self) -> None:
        assert _is_retryable_error(http_error(401)) == (True, 1)
        assert _is_retryable_error(Exception("Invalid Crumb")) == (True, 1)

    def test_connection_message(self) -> None:
        assert _is_retryable_error(ConnectionError("Connection reset by peer"))[0]

    def test_not_found_not_retried(self) -> None:
        assert _is_retryable_error(http_error(404)) == (False, 0)
        assert _is_retryable_error(ValueError("No data returned for BTC-USD")) == (False, 0)


class TestRetryResult:
    def test_provenance_trace_trimmed(self) -> None:
        trace = [RetryAttempt(attempt=i, ok=False, error="HTTPError", backoff_s=1.0) for i in range(1, 5)]
        trace.append(RetryAttempt(attempt=5, ok=True))
        prov = RetryResult(result=None, attempts=5, total_backoff_seconds=4.0, retry_trace=trace).to_provenance()

        assert prov["source"] == "yfinance"
        assert prov["attempts"] == 5
        assert [t["attempt"] for t in prov["retry_trace"]] == [3, 4, 5]
        assert prov["retry_trace"][-1] == {"attempt": 5, "ok": True}

    def test_no_trace_on_first_success(self) -> None:
        prov = RetryResult(result=1, attempts=1, total_backoff_seconds=0.0).to_provenance()
        assert "retry_trace" not in prov


class TestFetchDailyCandles:
    """Tests for fetch_daily_candles."""

    def test_download_standardized(self, raw_yf_df) -> None:
        with patch.object(btc_client.yf, "download", return_value=raw_yf_df) as download:
            df, prov = asyncio.run(fetch_daily_candles(CandleParams(days=10)))

        assert list(df.columns) == ["date", "open", "high", "low", "close", "volume"]
        assert len(df) == 10
        assert prov["source"] == "yfinance"
        assert prov["attempts"] == 1
        assert download.call_args.kwargs["tickers"] == "BTC-USD"

    def test_retries_transient_errors(self, raw_yf_df) -> None:
        side_effect = [http_error(429), raw_yf_df]
        with patch.object(btc_client.yf, "download", side_effect=side_effect):
            df, prov = asyncio.run(fetch_daily_candles(CandleParams(days=10)))

        assert len(df) == 10
        assert prov["attempts"] == 2
        assert [t["ok"] for t in prov["retry_trace"]] == [False, True]

    def test_gives_up(self) -> None:
        with patch.object(btc_client.yf, "download", side_effect=http_error(500)) as download:
            with pytest.raises(BTCDataRetryError):
                asyncio.run(fetch_daily_candles(CandleParams(days=10)))
        assert download.call_count == btc_client._max_retries + 1

    def test_empty_download_not_retried(self) -> None:
        with patch.object(btc_client.yf, "download", return_value=pd.DataFrame()) as download:
            with pytest.raises(ValueError, match="No data returned"):
                asyncio.run(fetch_daily_candles(CandleParams(days=10)))
        assert download.call_count == 1

    def test_cache_hit_skips_download(self, raw_yf_df, candle_cache) -> None:
        params = CandleParams(days=10)
        with patch.object(btc_client.yf, "download", return_value=raw_yf_df) as download:
            first, _ = asyncio.run(fetch_daily_candles(params, candle_cache))
            second, prov = asyncio.run(fetch_daily_candles(params, candle_cache))

        assert download.call_count == 1
        assert prov["source"] == "cache"
        assert prov["uri"] == params.to_uri()
        assert second["close"].tolist() == first["close"].tolist()


class TestFetchSpot:
    def test_last_price(self) -> None:
        ticker = MagicMock()
        ticker.fast_info.last_price = 84250.5
        with patch.object(btc_client.yf, "Ticker", return_value=ticker):
            price, prov = asyncio.run(fetch_spot())

        assert price == 84250.5
        assert prov["source"] == "yfinance"
        assert prov["as_of"].endswith("Z")

    def test_missing_price(self) -> None:
        ticker = MagicMock()
        ticker.fast_info.last_price = None
        with patch.object(btc_client.yf, "Ticker", return_value=ticker):
            with pytest.raises(ValueError, match="No spot price"):
                asyncio.run(fetch_spot())
