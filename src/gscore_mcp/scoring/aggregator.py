"""Weight renormalization and composite aggregation.

The composite is a flat weighted average over fresh, scored factors. Weights
of stale or excluded factors are redistributed proportionally over the
included set, never dropped, so the included weights always sum to 1.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from gscore_mcp.scoring.bands import SCORE_MAX, SCORE_MIN, band_for
from gscore_mcp.scoring.config import normalize_factor_weights
from gscore_mcp.scoring.models import (
    HEALTH_GREEN,
    HEALTH_RED,
    HEALTH_YELLOW,
    CompositeResult,
    FactorConfig,
    FactorSummary,
    GScoreError,
    RiskConfig,
    TransformConfig,
)
from gscore_mcp.utils.transforms import clamp, is_finite, round_half_up

logger = logging.getLogger(__name__)


class InsufficientFactorsError(GScoreError):
    """Raised when fewer usable factors exist than the configured minimum."""

    def __init__(self, usable: int, required: int, total: int):
        super().__init__(f"Only {usable} of {total} factors usable, {required} required")
        self.usable = usable
        self.required = required
        self.total = total


@dataclass(frozen=True)
class Aggregate:
    """Raw weighted-sum result before transform and adjustments."""

    raw_composite: int
    unrounded: float
    weights: dict[str, float]
    included: tuple[str, ...]
    excluded: tuple[str, ...]
    total_effective_weight: float


def usable_factors(factors: Sequence[FactorSummary]) -> list[FactorSummary]:
    """Factors that count: status fresh with a finite numeric score."""
    return [f for f in factors if f.status == "fresh" and is_finite(f.score)]


def aggregate(
    factors: Sequence[FactorSummary],
    config: RiskConfig | None = None,
    min_factors: int | None = None,
) -> Aggregate:
    """
    Compute the raw composite over fresh factors.

    Args:
        factors: Classified factor summaries
        config: When given, weights come from its enabled factors and its
            min_factors_required applies. Otherwise the summaries' own
            weights are used.
        min_factors: Explicit minimum usable count (overrides config)

    Returns:
        Aggregate with the rounded raw composite and renormalized weights

    Raises:
        InsufficientFactorsError: If fewer than the minimum factors are usable
    """
    if min_factors is None:
        min_factors = config.composite.min_factors_required if config else 1
    required = max(1, min_factors)

    usable = usable_factors(factors)
    usable_keys = {f.key for f in usable}

    if config is not None:
        candidates: list[FactorConfig] = [f for f in config.enabled_factors if f.key in usable_keys]
    else:
        candidates = [
            FactorConfig(key=f.key, label=f.label, pillar=f.pillar, weight=f.weight) for f in usable
        ]
    weights = normalize_factor_weights(candidates)

    included = tuple(f.key for f in usable if f.key in weights)
    excluded = tuple(f.key for f in factors if f.key not in weights)

    if len(included) < required:
        logger.warning(
            f"Aggregator: {len(included)} usable factors, {required} required "
            f"(excluded: {', '.join(excluded) or 'none'})"
        )
        raise InsufficientFactorsError(len(included), required, len(factors))

    unrounded = sum(f.score * weights[f.key] for f in usable if f.key in weights)
    total_effective_weight = sum(c.weight for c in candidates if c.key in weights)

    return Aggregate(
        raw_composite=int(round_half_up(unrounded)),
        unrounded=unrounded,
        weights=weights,
        included=included,
        excluded=excluded,
        total_effective_weight=total_effective_weight,
    )


def apply_sensitivity_transform(score: float, params: TransformConfig | None) -> float:
    """
    Stretch a score away from the pivot, more strongly the further it sits.

    pivot + (x - pivot) * (1 + gain * |x - pivot| / 50), clamped to [0, 100].
    Identity when the transform is disabled or absent.
    """
    if params is None or not params.enabled:
        return score
    if not is_finite(score):
        return score
    d = score - params.pivot
    stretched = params.pivot + d * (1 + params.gain * abs(d) / 50.0)
    return clamp(stretched, SCORE_MIN, SCORE_MAX)


def final_score(raw: float, transform: TransformConfig | None, cycle: float, spike: float) -> float:
    """Transformed raw plus adjustments, clamped to [0, 100] and rounded to 0.1."""
    transformed = apply_sensitivity_transform(raw, transform)
    return round_half_up(clamp(transformed + cycle + spike, SCORE_MIN, SCORE_MAX), 1)


def build_composite_result(
    factors: Sequence[FactorSummary],
    config: RiskConfig,
    cycle_pts: float = 0.0,
    spike_pts: float = 0.0,
) -> CompositeResult:
    """
    Run aggregation, transform, adjustments, clamp and band mapping.

    Raises:
        InsufficientFactorsError: Propagated from aggregate()
    """
    agg = aggregate(factors, config)
    # raw_composite is the display integer; the transform stretches the unrounded sum
    base = agg.unrounded if config.transform.enabled else float(agg.raw_composite)
    transformed = apply_sensitivity_transform(base, config.transform)
    final = final_score(base, config.transform, cycle_pts, spike_pts)
    band = band_for(final, config.bands)

    logger.info(
        f"Aggregator: raw={agg.raw_composite} transformed={transformed:.2f} "
        f"cycle={cycle_pts:+.1f} spike={spike_pts:+.1f} final={final} band={band.key} "
        f"({len(agg.included)}/{len(factors)} factors)"
    )

    return CompositeResult(
        raw_composite=agg.raw_composite,
        transformed_composite=transformed,
        cycle=cycle_pts,
        spike=spike_pts,
        final_composite=final,
        band=band,
        included_factor_keys=agg.included,
        excluded_factor_keys=agg.excluded,
        total_effective_weight=agg.total_effective_weight,
        weights=agg.weights,
    )


def health_for(included: int, total: int, required: int = 1) -> str:
    """
    Snapshot health from factor coverage.

    green: every enabled factor included; yellow: some excluded;
    red: fewer than required.
    """
    if included < max(1, required):
        return HEALTH_RED
    if included >= total:
        return HEALTH_GREEN
    return HEALTH_YELLOW
