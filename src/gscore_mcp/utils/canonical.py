"""Canonical JSON utilities for snapshots and configuration digests.

Snapshots and config digests must be byte-stable: the same content always
serializes to the same string, so hashes change only when content does.

The canonical contract:
1. Key ordering: sorted at every level
2. Minimal separators, UTF-8 preserved
3. NaN/inf replaced with null, -0.0 with 0.0
4. numpy scalars unwrapped to Python numbers
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any

import numpy as np

# Digest length in hex characters
DIGEST_LENGTH = 16


def canonical_dumps(obj: Any) -> str:
    """Produce canonical JSON string with sorted keys and minimal separators.

    Uses allow_nan=False to fail fast if NaN/inf values slip through
    sanitization. This ensures JSON validity across all parsers.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def content_hash(obj: Any, length: int = DIGEST_LENGTH) -> str:
    """SHA-256 of the canonical JSON form of a sanitized object, truncated."""
    canonical_json = canonical_dumps(sanitize_nan_inf(obj))
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()[:length]


def _is_nan_or_inf(x: Any) -> bool:
    """Check if value is NaN or inf, handling numpy types safely."""
    try:
        # Works for float, numpy.float64, etc.
        return math.isnan(x) or math.isinf(x)
    except (TypeError, ValueError):
        # Not a numeric type that supports isnan/isinf
        return False


def _is_negative_zero(x: Any) -> bool:
    """Check if value is -0.0 (which creates diff noise)."""
    try:
        return x == 0.0 and math.copysign(1.0, x) < 0
    except (TypeError, ValueError):
        return False


def sanitize_nan_inf(obj: Any) -> Any:
    """Recursively replace NaN, inf, -inf with None and -0.0 with 0.0.

    JSON has no NaN/inf, and the dashboard's JavaScript parser rejects them.
    Tuples become lists so the result round-trips through JSON unchanged.
    """
    if isinstance(obj, dict):
        return {k: sanitize_nan_inf(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [sanitize_nan_inf(item) for item in obj]
    elif isinstance(obj, np.generic):
        return sanitize_nan_inf(obj.item())
    elif isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return obj
    elif _is_nan_or_inf(obj):
        return None
    elif _is_negative_zero(obj):
        return 0.0
    return obj


def pretty_dumps(obj: Any) -> str:
    """Human-readable JSON for files on disk; still NaN-free."""
    return json.dumps(sanitize_nan_inf(obj), indent=2, sort_keys=True, ensure_ascii=False)
