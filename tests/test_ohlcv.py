"""Tests for daily candle standardization."""

import pandas as pd

from gscore_mcp.utils.ohlcv import (
    CANDLE_COLUMNS,
    csv_to_df,
    daily_to_weekly,
    df_to_csv,
    standardize_candles,
)


class TestStandardizeCandles:
    """Tests for standardize_candles function."""

    def test_standardize_basic(self, raw_yf_df: pd.DataFrame) -> None:
        """Test columns, order and UTC dates."""
        result = standardize_candles(raw_yf_df)

        assert list(result.columns) == CANDLE_COLUMNS
        assert len(result) == 10
        assert result["close"].iloc[0] == 100.5
        assert str(result["date"].dt.tz) == "UTC"

    def test_standardize_removes_adj_close(self, raw_yf_df: pd.DataFrame) -> None:
        """Test that Adj Close column is dropped."""
        result = standardize_candles(raw_yf_df)
        assert "adj close" not in result.columns

    def test_standardize_handles_multi_index(self) -> None:
        """Test handling of (field, ticker) columns from yf.download."""
        index = pd.MultiIndex.from_tuples(
            [("Open", "BTC-USD"), ("High", "BTC-USD"), ("Low", "BTC-USD"),
             ("Close", "BTC-USD"), ("Volume", "BTC-USD")]
        )
        df = pd.DataFrame(
            [[100, 101, 99, 100.5, 1000000]],
            index=pd.DatetimeIndex(["2024-01-01"]),
            columns=index,
        )

        result = standardize_candles(df)
        assert list(result.columns) == CANDLE_COLUMNS
        assert result["close"].iloc[0] == 100.5

    def test_standardize_fills_missing_columns(self) -> None:
        df = pd.DataFrame(
            {"Date": pd.date_range("2024-01-01", periods=3, freq="D"), "Close": [1.0, 2.0, 3.0]}
        ).set_index("Date")

        result = standardize_candles(df)
        assert result["volume"].isna().all()
        assert result["close"].tolist() == [1.0, 2.0, 3.0]

    def test_standardize_sorts_and_dedupes(self) -> None:
        """Test out-of-order rows are sorted and duplicate days keep the last row."""
        df = pd.DataFrame(
            {
                "Date": pd.to_datetime(["2024-01-03", "2024-01-01", "2024-01-03"]),
                "Close": [3.0, 1.0, 30.0],
            }
        ).set_index("Date")

        result = standardize_candles(df)
        assert result["close"].tolist() == [1.0, 30.0]


class TestWeekly:
    """Tests for daily_to_weekly."""

    def test_last_close_per_week(self) -> None:
        # 2024-01-01 is a Monday; two full weeks
        dates = pd.date_range("2024-01-01", periods=14, freq="D", tz="UTC")
        df = pd.DataFrame({"date": dates, "close": [float(i) for i in range(1, 15)]})

        weekly = daily_to_weekly(df)
        assert weekly["close"].tolist() == [7.0, 14.0]
        assert weekly["date"].iloc[0] == pd.Timestamp("2024-01-07", tz="UTC")

    def test_skips_non_positive_closes(self) -> None:
        dates = pd.date_range("2024-01-01", periods=7, freq="D", tz="UTC")
        df = pd.DataFrame({"date": dates, "close": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 0.0]})

        weekly = daily_to_weekly(df)
        assert weekly["close"].tolist() == [6.0]

    def test_empty(self) -> None:
        df = pd.DataFrame({"date": pd.to_datetime([], utc=True), "close": []})
        assert daily_to_weekly(df).empty


class TestCsvRoundTrip:
    def test_cached_csv_restores_dates(self, raw_yf_df: pd.DataFrame) -> None:
        """Test CSV from the cache parses back with UTC dates."""
        df = standardize_candles(raw_yf_df)
        restored = csv_to_df(df_to_csv(df))

        assert list(restored.columns) == CANDLE_COLUMNS
        assert restored["date"].equals(df["date"])
        assert restored["close"].tolist() == df["close"].tolist()
