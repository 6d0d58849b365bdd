"""Latest snapshot and configuration tools."""

from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from gscore_mcp.scoring.config import ConfigValidationError, config_digest
from gscore_mcp.scoring.staleness import age_hours
from gscore_mcp.tools.runtime import Runtime, get_runtime
from gscore_mcp.utils.provenance import build_error_response, build_meta
from gscore_mcp.utils.transforms import is_finite


async def get_latest(runtime: Runtime | None = None) -> dict[str, Any]:
    """
    Latest persisted snapshot, with each factor's current data age.

    Never recomputes.
    """
    start_time = perf_counter()
    runtime = runtime or get_runtime()

    snapshot = runtime.store.read_latest()
    if snapshot is None:
        return build_error_response("not_found", "No snapshot yet. Call refresh_gscore first.")

    now = datetime.now(timezone.utc)
    factors = []
    for factor in snapshot.get("factors") or []:
        age = age_hours(factor.get("last_utc"), now)
        factors.append({**factor, "age_hours": round(age, 1) if is_finite(age) else None})

    return {
        **snapshot,
        "factors": factors,
        "snapshot_age_hours": round(age_hours(snapshot.get("as_of_utc"), now), 2),
        "meta": build_meta("get_latest", (perf_counter() - start_time) * 1000, snapshot.get("config_digest")),
    }


async def get_config(runtime: Runtime | None = None) -> dict[str, Any]:
    """Active scoring configuration with its digest and validation warnings."""
    start_time = perf_counter()
    runtime = runtime or get_runtime()

    try:
        config = runtime.provider.get_config()
    except ConfigValidationError as e:
        return build_error_response("config_invalid", str(e), errors=e.errors)

    digest = config_digest(config)
    return {
        "ok": True,
        "config": config.to_dict(),
        "config_digest": digest,
        "strict": runtime.provider.strict,
        "warnings": list(runtime.provider.last_warnings),
        "meta": build_meta("get_config", (perf_counter() - start_time) * 1000, digest),
    }
