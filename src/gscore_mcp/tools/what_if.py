"""What-if pillar weighting tool."""

from time import perf_counter
from typing import Any

from gscore_mcp.scoring.config import ConfigValidationError
from gscore_mcp.scoring.models import FactorSummary
from gscore_mcp.scoring.whatif import PRESETS, compute_alt_score
from gscore_mcp.tools.runtime import Runtime, get_runtime
from gscore_mcp.utils.provenance import build_error_response, build_meta


async def what_if_score(
    preset: str = "official_30_30",
    pillar_weights: dict[str, float] | None = None,
    runtime: Runtime | None = None,
) -> dict[str, Any]:
    """
    Re-score the latest snapshot under alternative pillar weights.

    Args:
        preset: Preset key (ignored when pillar_weights is given)
        pillar_weights: Custom {pillar: weight} mapping
        runtime: Collaborators (default: shared runtime)

    Returns:
        Official and alternative scores with bands and the difference
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

    factors = [FactorSummary.from_dict(f) for f in snapshot.get("factors") or []]
    cycle = float((snapshot.get("cycle_adjustment") or {}).get("adj_pts") or 0.0)
    spike = float((snapshot.get("spike_adjustment") or {}).get("adj_pts") or 0.0)

    try:
        alt = compute_alt_score(factors, config, pillar_weights or preset, cycle, spike)
    except ValueError as e:
        return build_error_response("invalid_request", str(e), presets=sorted(PRESETS))

    official = snapshot.get("composite_score")
    return {
        "ok": True,
        "as_of_utc": snapshot.get("as_of_utc"),
        "official": {"score": official, "band": snapshot.get("band")},
        "alternative": alt.to_dict(),
        "difference": round(alt.score - official, 1) if isinstance(official, (int, float)) else None,
        "presets": [{"key": p.key, "label": p.label, "weights": dict(p.weights)} for p in PRESETS.values()],
        "meta": build_meta("what_if_score", (perf_counter() - start_time) * 1000),
    }
