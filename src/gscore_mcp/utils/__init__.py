"""Utility modules."""

from gscore_mcp.utils.canonical import canonical_dumps, content_hash, pretty_dumps, sanitize_nan_inf
from gscore_mcp.utils.ohlcv import csv_to_df, daily_to_weekly, df_to_csv, standardize_candles
from gscore_mcp.utils.provenance import build_error_response, build_meta, build_provenance, factor_provenance
from gscore_mcp.utils.sanitize import mask_secrets, sanitize_provenance, sanitize_text
from gscore_mcp.utils.transforms import (
    calculate_rsi,
    clamp,
    is_finite,
    logistic01,
    percentile_rank,
    risk_from_percentile,
    risk_from_z,
    round_half_up,
    tanh01,
    winsorize,
    z_score,
)
from gscore_mcp.utils.validators import CandleParams, coerce_score, parse_utc, to_utc_iso

__all__ = [
    "canonical_dumps",
    "content_hash",
    "pretty_dumps",
    "sanitize_nan_inf",
    "csv_to_df",
    "daily_to_weekly",
    "df_to_csv",
    "standardize_candles",
    "build_error_response",
    "build_meta",
    "build_provenance",
    "factor_provenance",
    "mask_secrets",
    "sanitize_provenance",
    "sanitize_text",
    "calculate_rsi",
    "clamp",
    "is_finite",
    "logistic01",
    "percentile_rank",
    "risk_from_percentile",
    "risk_from_z",
    "round_half_up",
    "tanh01",
    "winsorize",
    "z_score",
    "CandleParams",
    "coerce_score",
    "parse_utc",
    "to_utc_iso",
]
