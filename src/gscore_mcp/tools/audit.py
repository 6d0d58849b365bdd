"""Audit tool: independently re-derive the published composite."""

from time import perf_counter
from typing import Any

from gscore_mcp.scoring.config import ConfigValidationError, config_digest
from gscore_mcp.scoring.models import TransformConfig
from gscore_mcp.scoring.validator import (
    log_validation_result,
    validate_composite_score,
    validate_factor_weights,
)
from gscore_mcp.tools.runtime import Runtime, get_runtime
from gscore_mcp.utils.provenance import build_error_response, build_meta


def _transform_from_snapshot(block: dict[str, Any] | None) -> TransformConfig | None:
    if not block or not block.get("enabled"):
        return None
    return TransformConfig(
        enabled=True,
        name=block.get("name", "sensitivity"),
        pivot=float(block.get("pivot", 50.0)),
        gain=float(block.get("gain", 0.15)),
    )


async def audit_latest(runtime: Runtime | None = None) -> dict[str, Any]:
    """
    Validate the latest snapshot's composite and the active weight config.

    Returns:
        Composite validation, weight validation and whether the snapshot was
        produced under the current configuration
    """
    start_time = perf_counter()
    runtime = runtime or get_runtime()

    snapshot = runtime.store.read_latest()
    if snapshot is None:
        return build_error_response("not_found", "No snapshot yet. Call refresh_gscore first.")

    try:
        config = runtime.provider.get_config()
    except ConfigValidationError as e:
        return build_error_response("config_invalid", str(e), errors=e.errors)

    adjustments = {
        "cycle": (snapshot.get("cycle_adjustment") or {}).get("adj_pts") or 0.0,
        "spike": (snapshot.get("spike_adjustment") or {}).get("adj_pts") or 0.0,
    }
    composite = validate_composite_score(
        snapshot.get("factors") or [],
        snapshot.get("composite_score"),
        adjustments,
        transform=_transform_from_snapshot(snapshot.get("transform")),
        bands=config.bands,
    )
    log_validation_result(composite, f"Audit of snapshot {snapshot.get('as_of_utc')}")
    weights = validate_factor_weights(config.factors)

    band_key = (snapshot.get("band") or {}).get("key")
    current_digest = config_digest(config)
    return {
        "ok": True,
        "as_of_utc": snapshot.get("as_of_utc"),
        "valid": composite.valid and weights.valid,
        "composite": composite.to_dict(),
        "band_matches": composite.expected_band_key == band_key,
        "weights": {
            "valid": weights.valid,
            "total_weight": weights.total_weight,
            "delta": weights.delta,
            "tolerance": weights.tolerance,
        },
        "config_digest": {
            "snapshot": snapshot.get("config_digest"),
            "current": current_digest,
            "matches": snapshot.get("config_digest") == current_digest,
        },
        "meta": build_meta("audit_latest", (perf_counter() - start_time) * 1000, current_digest),
    }
