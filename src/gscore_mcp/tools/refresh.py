"""Refresh pipeline: collect, classify, aggregate, adjust, persist."""

import asyncio
import logging
import math
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from gscore_mcp import SCHEMA_VERSION
from gscore_mcp.data.store import build_history_row
from gscore_mcp.factors import collect_factor_results
from gscore_mcp.scoring.adjustments import compute_cycle_adjustment_live, compute_spike_adjustment_live
from gscore_mcp.scoring.aggregator import InsufficientFactorsError, build_composite_result, health_for
from gscore_mcp.scoring.config import ConfigValidationError, config_digest
from gscore_mcp.scoring.models import (
    HEALTH_RED,
    AdjustmentResult,
    CompositeResult,
    FactorResult,
    FactorSummary,
    RiskConfig,
)
from gscore_mcp.scoring.staleness import classify_factors
from gscore_mcp.scoring.validator import log_validation_result, validate_composite_score
from gscore_mcp.tools.runtime import Runtime, get_runtime
from gscore_mcp.utils.provenance import build_error_response, build_meta, factor_provenance
from gscore_mcp.utils.sanitize import sanitize_provenance, sanitize_text
from gscore_mcp.utils.validators import to_utc_iso

logger = logging.getLogger(__name__)


def _factor_dict(summary: FactorSummary) -> dict[str, Any]:
    out = summary.to_dict()
    out["reason"] = sanitize_text(summary.reason, max_length=200)
    out["label"] = sanitize_text(summary.label, max_length=100)
    return out


def _btc_block(spike: AdjustmentResult) -> dict[str, Any]:
    diag = spike.diagnostics
    spot = diag.get("spot")
    ref = diag.get("ref_close")
    change = None
    if isinstance(diag.get("r_1d"), float) and math.isfinite(diag["r_1d"]):
        change = round((math.exp(diag["r_1d"]) - 1) * 100, 2)
    return {
        "symbol": "BTC-USD",
        "spot": spot,
        "ref_close": ref,
        "change_1d_pct": change,
        "as_of_utc": spike.last_utc,
    }


def build_snapshot(
    as_of: datetime,
    config: RiskConfig,
    summaries: list[FactorSummary],
    composite: CompositeResult,
    cycle: AdjustmentResult,
    spike: AdjustmentResult,
    results: dict[str, FactorResult],
    extra_provenance: list[dict[str, Any]],
) -> dict[str, Any]:
    """Assemble the full latest-snapshot document in memory."""
    required = config.composite.min_factors_required
    provenance: list[Any] = []
    for key, result in results.items():
        provenance.extend(factor_provenance(key, result))
    provenance.extend(extra_provenance)

    return {
        "ok": True,
        "as_of_utc": to_utc_iso(as_of),
        "composite_raw": composite.raw_composite,
        "composite_score": composite.final_composite,
        "cycle_adjustment": cycle.to_dict(),
        "spike_adjustment": spike.to_dict(),
        "band": composite.band.to_dict(),
        "health": health_for(len(composite.included_factor_keys), len(config.enabled_factors), required),
        "factors": [_factor_dict(s) for s in summaries],
        "included_factor_keys": list(composite.included_factor_keys),
        "excluded_factor_keys": list(composite.excluded_factor_keys),
        "total_effective_weight": composite.total_effective_weight,
        "weights": composite.weights,
        "btc": _btc_block(spike),
        "provenance": sanitize_provenance(provenance),
        "model_version": config.model_version,
        "config_digest": config_digest(config),
        "transform": config.transform.to_snapshot(),
        "schema_version": SCHEMA_VERSION,
    }


async def compute_snapshot(runtime: Runtime) -> dict[str, Any]:
    """
    Run one scoring cycle and persist it.

    The latest snapshot is written only on success; with too few usable
    factors the previous snapshot is kept and a red-health error is returned.

    Returns:
        Snapshot dict (ok=True) or error response (ok=False)
    """
    try:
        config = runtime.provider.get_config()
    except ConfigValidationError as e:
        logger.error(f"Refresh: configuration rejected: {e}")
        return build_error_response("config_invalid", str(e), errors=e.errors)

    sources = runtime.sources(config)
    results, (cycle, cycle_prov), (spike, spike_prov) = await asyncio.gather(
        collect_factor_results(sources, runtime.factor_timeout_s),
        compute_cycle_adjustment_live(config.cycle, runtime.candle_cache),
        compute_spike_adjustment_live(config.spike_detector, runtime.candle_cache),
    )

    now = datetime.now(timezone.utc)
    summaries = classify_factors(results, config, now)

    try:
        composite = build_composite_result(summaries, config, cycle.adj_pts, spike.adj_pts)
    except InsufficientFactorsError as e:
        previous = runtime.store.read_latest()
        logger.error(f"Refresh: {e}; keeping previous snapshot")
        return build_error_response(
            "insufficient_factors",
            str(e),
            health=HEALTH_RED,
            usable=e.usable,
            required=e.required,
            factors=[_factor_dict(s) for s in summaries],
            previous_as_of_utc=previous.get("as_of_utc") if previous else None,
        )

    snapshot = build_snapshot(
        now, config, summaries, composite, cycle, spike, results, cycle_prov + spike_prov
    )
    runtime.store.write_latest(snapshot)
    appended = runtime.store.append_history_if_due(build_history_row(snapshot), runtime.history_min_hours)

    validation = validate_composite_score(
        summaries, composite.final_composite, composite.adjustments, config.transform, config.bands
    )
    log_validation_result(validation, "Refresh composite check")

    return {
        **snapshot,
        "history_appended": appended,
        "validation": {"valid": validation.valid, "delta": round(validation.delta, 4)},
    }


async def refresh_gscore(force: bool = True, runtime: Runtime | None = None) -> dict[str, Any]:
    """
    Recompute the G-Score, or return the latest snapshot when not forced.

    Args:
        force: Recompute even if a latest snapshot exists
        runtime: Collaborators (default: shared runtime)

    Returns:
        Snapshot with meta, or an error response
    """
    start_time = perf_counter()
    runtime = runtime or get_runtime()

    if not force:
        latest = runtime.store.read_latest()
        if latest is not None:
            return {
                **latest,
                "cached": True,
                "meta": build_meta(
                    "refresh_gscore", (perf_counter() - start_time) * 1000, latest.get("config_digest")
                ),
            }

    async with runtime.lock:
        try:
            result = await compute_snapshot(runtime)
        except Exception as e:
            logger.exception("Refresh: snapshot computation failed")
            result = build_error_response("internal_error", f"Refresh failed: {e}")

    result["cached"] = False
    result["meta"] = build_meta(
        "refresh_gscore", (perf_counter() - start_time) * 1000, result.get("config_digest")
    )
    return result
