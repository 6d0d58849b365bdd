"""Composite score validation.

An independent recomputation of the published composite, for audits and
tests, never the serving path. The raw composite is left unrounded here,
unlike the aggregator, so the two paths differ by at most the rounding of
the raw value plus the 0.1 rounding of the final score; TOLERANCE covers
both.
"""

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from gscore_mcp.scoring.aggregator import apply_sensitivity_transform
from gscore_mcp.scoring.bands import band_for
from gscore_mcp.scoring.models import FactorConfig, FactorSummary, RiskBand, TransformConfig
from gscore_mcp.utils.transforms import clamp, is_finite

logger = logging.getLogger(__name__)

TOLERANCE = 0.5
WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class IncludedFactor:
    key: str
    score: float
    weight: float
    contribution: float


@dataclass(frozen=True)
class CompositeValidation:
    """Structured result of validate_composite_score()."""

    valid: bool
    delta: float
    expected: float
    actual: float
    raw_composite: float
    total_weight: float
    included_factors: tuple[IncludedFactor, ...]
    excluded_count: int
    adjustments: dict[str, float] = field(default_factory=dict)
    expected_band_key: str | None = None
    tolerance: float = TOLERANCE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["included_factors"] = [asdict(f) for f in self.included_factors]
        return data


@dataclass(frozen=True)
class WeightValidation:
    valid: bool
    total_weight: float
    delta: float
    tolerance: float


def _get(factor: FactorSummary | Mapping[str, Any], name: str) -> Any:
    if isinstance(factor, Mapping):
        return factor.get(name)
    return getattr(factor, name)


def validate_composite_score(
    factors: Sequence[FactorSummary | Mapping[str, Any]],
    composite_score: float,
    adjustments: Mapping[str, float] | None = None,
    transform: TransformConfig | None = None,
    bands: Sequence[RiskBand] | None = None,
) -> CompositeValidation:
    """
    Recompute the expected composite and compare it to the published one.

    Args:
        factors: Factor summaries (objects or snapshot dicts) as published
        composite_score: Published final composite
        adjustments: {"cycle": pts, "spike": pts} as published
        transform: Sensitivity transform in effect, if any
        bands: When given, the expected band key is reported too

    Returns:
        CompositeValidation; valid iff |expected - actual| <= 0.5
    """
    adjustments = dict(adjustments or {})
    cycle = float(adjustments.get("cycle") or 0.0)
    spike = float(adjustments.get("spike") or 0.0)

    included: list[IncludedFactor] = []
    weighted_sum = 0.0
    total_weight = 0.0
    for factor in factors:
        score = _get(factor, "score")
        if _get(factor, "status") != "fresh" or not is_finite(score):
            continue
        weight = float(_get(factor, "weight") or 0.0) / 100.0
        if weight <= 0:
            continue
        weighted_sum += score * weight
        total_weight += weight
        included.append(IncludedFactor(_get(factor, "key"), float(score), weight * 100.0, score * weight))

    if total_weight > 0:
        raw = weighted_sum / total_weight
        transformed = apply_sensitivity_transform(raw, transform)
        expected = clamp(transformed + cycle + spike, 0.0, 100.0)
    else:
        raw = math.nan
        expected = math.nan

    actual = float(composite_score) if is_finite(composite_score) else math.nan
    delta = abs(expected - actual) if is_finite(expected) and is_finite(actual) else math.inf
    expected_band = band_for(expected, bands).key if bands and is_finite(expected) else None

    return CompositeValidation(
        valid=delta <= TOLERANCE,
        delta=delta,
        expected=expected,
        actual=actual,
        raw_composite=raw,
        total_weight=total_weight,
        included_factors=tuple(included),
        excluded_count=len(factors) - len(included),
        adjustments={"cycle": cycle, "spike": spike},
        expected_band_key=expected_band,
    )


def validate_factor_weights(
    factor_configs: Iterable[FactorConfig],
    tolerance: float = WEIGHT_TOLERANCE,
) -> WeightValidation:
    """Check that enabled factor weights, as fractions, sum to 1.0."""
    total = sum(f.weight / 100.0 for f in factor_configs if f.enabled)
    delta = abs(total - 1.0)
    return WeightValidation(valid=delta <= tolerance, total_weight=total, delta=delta, tolerance=tolerance)


def log_validation_result(result: CompositeValidation, context: str = "Composite validation") -> bool:
    """
    Log a validation result; mismatches at WARNING.

    Returns:
        result.valid
    """
    included = len(result.included_factors)
    summary = (
        f"{context}: delta={result.delta:.3f} expected={result.expected:.2f} "
        f"actual={result.actual:.2f} raw={result.raw_composite:.2f} "
        f"weight={result.total_weight * 100:.1f}% "
        f"factors={included}/{included + result.excluded_count}"
    )
    if result.valid:
        logger.info(f"{summary} PASSED")
    else:
        logger.warning(f"{summary} FAILED (tolerance {result.tolerance})")
    return result.valid
