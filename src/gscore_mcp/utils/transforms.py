"""Normalization primitives shared by factor sources and adjustments.

Every function treats non-finite input (None, NaN, +/-inf) as unknown and
propagates NaN instead of raising, so a single bad upstream value degrades a
factor rather than the whole pipeline.
"""

import math
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np
import pandas as pd

# Defaults mirrored by NormalizationConfig; factor sources override per call
LOGISTIC_K = 3.0
Z_SCALE = 2.0
Z_CLIP = 4.0


def is_finite(x: Any) -> bool:
    """True for real numbers that are neither NaN nor infinite."""
    if x is None or isinstance(x, bool):
        return False
    try:
        return math.isfinite(x)
    except (TypeError, ValueError):
        return False


def _finite_array(values: Iterable[Any]) -> np.ndarray:
    arr = np.array([v if is_finite(v) else np.nan for v in values], dtype=float)
    return arr[np.isfinite(arr)]


def round_half_up(x: float, ndigits: int = 0) -> float:
    """
    Round half away from zero.

    Python's round() uses banker's rounding (round(80.5) == 80); published
    scores follow the conventional half-up rule.
    """
    if not is_finite(x):
        return math.nan
    factor = 10**ndigits
    scaled = abs(x) * factor
    rounded = math.floor(scaled + 0.5) / factor
    return math.copysign(rounded, x) if rounded != 0 else 0.0


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp value to [lo, hi]; NaN passes through."""
    if not is_finite(value):
        return math.nan
    return max(lo, min(hi, value))


def winsorize(values: Sequence[Any], limits: tuple[float, float] = (0.05, 0.95)) -> list[float]:
    """
    Clip values to the empirical [lo, hi] percentile range of the finite subset.

    Args:
        values: Input values (may contain None/NaN/inf)
        limits: (lower, upper) percentiles as fractions in [0, 1]

    Returns:
        Same-length list; non-finite inputs map to NaN
    """
    finite = np.sort(_finite_array(values))
    if finite.size == 0:
        return [math.nan] * len(values)

    lo_pct, hi_pct = limits
    n = finite.size
    lo_idx = min(max(int(math.floor(lo_pct * n)), 0), n - 1)
    hi_idx = min(max(int(math.ceil(hi_pct * n)) - 1, 0), n - 1)
    lower = float(finite[lo_idx])
    upper = float(finite[hi_idx])

    return [max(lower, min(upper, float(v))) if is_finite(v) else math.nan for v in values]


def z_score(x: float, reference: Sequence[Any]) -> float:
    """Z-score of x against reference (population std). NaN if undefined."""
    if not is_finite(x):
        return math.nan
    ref = _finite_array(reference)
    if ref.size == 0:
        return math.nan
    std = float(ref.std(ddof=0))
    if std == 0:
        return math.nan
    return (x - float(ref.mean())) / std


def percentile_rank(reference: Sequence[Any], x: float) -> float:
    """
    Mid-rank percentile of x within reference.

    Returns:
        (count below + 0.5 * count equal) / n, in [0, 1]; NaN if undefined
    """
    if not is_finite(x):
        return math.nan
    ref = _finite_array(reference)
    if ref.size == 0:
        return math.nan
    below = int((ref < x).sum())
    equal = int((ref == x).sum())
    return (below + 0.5 * equal) / ref.size


def logistic01(x: float, k: float = LOGISTIC_K, x0: float = 0.5) -> float:
    """Logistic map 1 / (1 + e^(-k(x - x0))) into (0, 1)."""
    if not is_finite(x):
        return math.nan
    return 1.0 / (1.0 + math.exp(-k * (x - x0)))


def tanh01(z: float, scale: float = Z_SCALE) -> float:
    """Map a z-score into (0, 1) with saturation: 0.5 * (1 + tanh(z / scale))."""
    if not is_finite(z):
        return math.nan
    return 0.5 * (1.0 + math.tanh(z / scale))


def risk_from_percentile(p: float, invert: bool = False, k: float = LOGISTIC_K) -> float:
    """
    Convert a percentile in [0, 1] to an integer risk score in [0, 100].

    Args:
        p: Percentile rank
        invert: Use 1 - p when higher raw values mean lower risk
        k: Logistic steepness

    Returns:
        Risk score, or NaN if p is missing or outside [0, 1]
    """
    if not is_finite(p) or p < 0 or p > 1:
        return math.nan
    x = 1.0 - p if invert else p
    return round_half_up(100.0 * logistic01(x, k))


def risk_from_z(
    z: float,
    direction: int = 1,
    scale: float = Z_SCALE,
    clip: float = Z_CLIP,
) -> float:
    """Clamp z to +/-clip, apply direction, tanh-map and round to [0, 100]."""
    if not is_finite(z):
        return math.nan
    directed = direction * max(-clip, min(clip, z))
    return round_half_up(100.0 * tanh01(directed, scale))


def ewma(prev: float | None, curr: float, alpha: float = 0.3) -> float:
    """One exponential smoothing step. First call (prev None) returns curr; NaN in, NaN out."""
    if not is_finite(curr):
        return math.nan
    if prev is None or not is_finite(prev):
        return curr
    return alpha * curr + (1 - alpha) * prev


def sma(series: Sequence[Any], window: int) -> list[float]:
    """
    Simple moving average over finite values.

    Leading entries are NaN until `window` finite values have been seen;
    non-finite positions stay NaN.
    """
    values = pd.Series([v if is_finite(v) else np.nan for v in series], dtype=float)
    finite = values.dropna()
    rolled = finite.rolling(window=window, min_periods=window).mean()
    return values.where(values.isna(), rolled.reindex(values.index)).tolist()


def ema(series: Sequence[Any], window: int) -> list[float]:
    """
    Exponential moving average with alpha = 2 / (window + 1).

    Seeds from the first finite value, so output starts immediately.
    """
    values = pd.Series([v if is_finite(v) else np.nan for v in series], dtype=float)
    finite = values.dropna()
    smoothed = finite.ewm(alpha=2 / (window + 1), adjust=False).mean()
    return smoothed.reindex(values.index).tolist()


def ols(xs: Sequence[Any], ys: Sequence[Any]) -> tuple[float, float] | None:
    """
    Ordinary least squares fit y = a + b * x.

    Returns:
        (intercept a, slope b), or None with fewer than 10 finite pairs or a
        singular design
    """
    if len(xs) != len(ys):
        return None
    pairs = [(float(x), float(y)) for x, y in zip(xs, ys) if is_finite(x) and is_finite(y)]
    if len(pairs) < 10:
        return None

    x = np.array([p[0] for p in pairs])
    y = np.array([p[1] for p in pairs])
    n = x.size
    sx, sy = x.sum(), y.sum()
    sxx, sxy = (x * x).sum(), (x * y).sum()

    den = n * sxx - sx * sx
    if abs(den) < 1e-10:
        return None

    b = (n * sxy - sx * sy) / den
    a = (sy - b * sx) / n
    return float(a), float(b)


def sample_std(values: Sequence[Any]) -> float:
    """Sample standard deviation (ddof=1); NaN with fewer than 2 finite values."""
    arr = _finite_array(values)
    if arr.size < 2:
        return math.nan
    return float(arr.std(ddof=1))


def calculate_rsi(prices: pd.Series, period: int = 14) -> pd.Series:
    """
    Calculate Relative Strength Index.

    Uses Wilder's smoothing method (exponential moving average).

    Args:
        prices: Price series (typically close prices)
        period: RSI period (default: 14)

    Returns:
        RSI series (0-100 scale)
    """
    delta = prices.diff()

    gain = delta.where(delta > 0, 0.0)
    loss = (-delta).where(delta < 0, 0.0)

    # Wilder's smoothing: alpha = 1/period
    avg_gain = gain.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()

    rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))

    # Handle division by zero (when avg_loss is 0)
    rsi = rsi.replace([np.inf, -np.inf], 100)

    return rsi
