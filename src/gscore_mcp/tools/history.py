"""History and factor-delta tool."""

from time import perf_counter
from typing import Any

from gscore_mcp.data.store import compute_factor_deltas
from gscore_mcp.scoring.config import ConfigValidationError
from gscore_mcp.tools.runtime import Runtime, get_runtime
from gscore_mcp.utils.provenance import build_error_response, build_meta

RANGE_DAYS = {"30d": 30, "90d": 90, "180d": 180, "1y": 365}


async def get_history(
    range_: str = "90d",
    include_deltas: bool = True,
    runtime: Runtime | None = None,
) -> dict[str, Any]:
    """
    Recent history rows, one per day, oldest first.

    Args:
        range_: 30d, 90d, 180d or 1y
        include_deltas: Add per-factor deltas between the last two rows
        runtime: Collaborators (default: shared runtime)
    """
    start_time = perf_counter()
    runtime = runtime or get_runtime()

    if range_ not in RANGE_DAYS:
        return build_error_response(
            "invalid_range",
            f"Invalid range '{range_}'. Must be one of: {sorted(RANGE_DAYS)}",
        )

    rows = runtime.store.read_history(limit=RANGE_DAYS[range_])
    result: dict[str, Any] = {
        "ok": True,
        "range": range_,
        "count": len(rows),
        "points": rows,
    }

    if include_deltas:
        try:
            keys = [f.key for f in runtime.provider.get_config().factors]
        except ConfigValidationError:
            # Fall back to whatever factors the rows carry
            keys = sorted({k for row in rows[-1:] for k in row} - {
                "as_of_utc", "composite", "composite_raw", "version", "band", "config_digest",
            })
        result["deltas"] = compute_factor_deltas(rows, keys)

    result["meta"] = build_meta("get_history", (perf_counter() - start_time) * 1000)
    return result
