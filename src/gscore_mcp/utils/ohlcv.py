"""Daily candle standardization utilities."""

from io import StringIO

import pandas as pd

CANDLE_COLUMNS = ["date", "open", "high", "low", "close", "volume"]


def standardize_candles(df: pd.DataFrame) -> pd.DataFrame:
    """
    Standardize daily OHLCV to consistent schema.

    Output columns (always, in this order): date, open, high, low, close, volume
    All lowercase, date as tz-aware UTC timestamps, sorted ascending, one row
    per day (last row wins on duplicates). Missing columns filled with NaN.

    Args:
        df: Raw DataFrame from yfinance

    Returns:
        Standardized DataFrame with consistent schema
    """
    df = df.copy()

    # Handle multi-index from yf.download (ticker level)
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)

    if "Adj Close" in df.columns:
        df = df.drop(columns=["Adj Close"])

    df.columns = [str(c).lower() for c in df.columns]
    df = df.reset_index()

    date_cols = [c for c in df.columns if str(c).lower() in ("date", "datetime", "index")]
    if date_cols:
        df = df.rename(columns={date_cols[0]: "date"})

    for col in CANDLE_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA

    df = df[CANDLE_COLUMNS]
    df["date"] = pd.to_datetime(df["date"], utc=True, errors="coerce")
    for col in CANDLE_COLUMNS[1:]:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    df = df.dropna(subset=["date"])
    df = df.sort_values("date", kind="stable").drop_duplicates(subset="date", keep="last")
    return df.reset_index(drop=True)


def daily_to_weekly(df: pd.DataFrame) -> pd.DataFrame:
    """
    Reduce standardized daily candles to weekly closes.

    Keeps the last positive close of each calendar week (weeks ending Sunday),
    stamped with that day's date.
    """
    valid = df[pd.to_numeric(df["close"], errors="coerce") > 0][["date", "close"]]
    if valid.empty:
        return valid.reset_index(drop=True)
    # Period conversion needs naive timestamps; dates are already UTC
    week = valid["date"].dt.tz_convert(None).dt.to_period("W-SUN")
    weekly = valid.sort_values("date").groupby(week, sort=True).last()
    return weekly.reset_index(drop=True)[["date", "close"]]


def df_to_csv(df: pd.DataFrame) -> str:
    """Convert to CSV string for cache."""
    return df.to_csv(index=False)


def csv_to_df(csv_text: str) -> pd.DataFrame:
    """Inverse of df_to_csv for cached candles."""
    df = pd.read_csv(StringIO(csv_text))
    df["date"] = pd.to_datetime(df["date"], utc=True, errors="coerce")
    return df
