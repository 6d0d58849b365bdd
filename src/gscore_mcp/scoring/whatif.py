"""What-if scoring with alternative pillar weights.

Factors are first averaged within their pillar (weights renormalized per
pillar), then pillars are combined with the preset's pillar weights,
renormalized over the pillars that have at least one fresh factor.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from gscore_mcp.scoring.aggregator import usable_factors
from gscore_mcp.scoring.bands import SCORE_MAX, SCORE_MIN, band_for
from gscore_mcp.scoring.models import FactorSummary, RiskBand, RiskConfig
from gscore_mcp.utils.transforms import clamp, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Preset:
    key: str
    label: str
    weights: Mapping[str, float]


PRESETS: dict[str, Preset] = {
    p.key: p
    for p in (
        Preset(
            "official_30_30",
            "Official (30/30)",
            {"liquidity": 0.30, "momentum": 0.30, "leverage": 0.20, "macro": 0.10, "social": 0.10},
        ),
        Preset(
            "liq_35_25",
            "Liquidity-Heavy (35/25)",
            {"liquidity": 0.35, "momentum": 0.25, "leverage": 0.20, "macro": 0.10, "social": 0.10},
        ),
        Preset(
            "mom_25_35",
            "Momentum-Tilted (25/35)",
            {"liquidity": 0.25, "momentum": 0.35, "leverage": 0.20, "macro": 0.10, "social": 0.10},
        ),
    )
}


@dataclass(frozen=True)
class AltScore:
    preset: str
    score: float
    band: RiskBand
    pillar_scores: dict[str, float]
    pillar_weights: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "preset": self.preset,
            "score": self.score,
            "band": self.band.to_dict(),
            "pillar_scores": self.pillar_scores,
            "pillar_weights": self.pillar_weights,
        }


def resolve_preset(preset: str | Mapping[str, float]) -> tuple[str, dict[str, float]]:
    """
    Preset key or custom {pillar: weight} mapping to (name, weights).

    Raises:
        ValueError: For unknown preset keys or invalid custom weights
    """
    if isinstance(preset, str):
        if preset not in PRESETS:
            raise ValueError(f"Unknown preset '{preset}'. Must be one of: {sorted(PRESETS)}")
        return preset, dict(PRESETS[preset].weights)

    weights = {str(k): float(v) for k, v in preset.items()}
    if not weights or any(w < 0 for w in weights.values()) or sum(weights.values()) <= 0:
        raise ValueError("Custom pillar weights must be non-negative with a positive total")
    return "custom", weights


def pillar_averages(factors: Sequence[FactorSummary], config: RiskConfig) -> dict[str, float]:
    """Weighted average score of fresh factors per (composite) pillar."""
    usable = {f.key: f for f in usable_factors(factors)}
    sums: dict[str, float] = {}
    weights: dict[str, float] = {}
    for fc in config.enabled_factors:
        summary = usable.get(fc.key)
        if summary is None or fc.weight <= 0:
            continue
        sums[fc.pillar] = sums.get(fc.pillar, 0.0) + summary.score * fc.weight
        weights[fc.pillar] = weights.get(fc.pillar, 0.0) + fc.weight
    return {p: sums[p] / weights[p] for p in sums}


def compute_alt_score(
    factors: Sequence[FactorSummary],
    config: RiskConfig,
    preset: str | Mapping[str, float],
    cycle: float = 0.0,
    spike: float = 0.0,
) -> AltScore:
    """
    Composite under alternative pillar weights, with the same adjustments.

    Raises:
        ValueError: For an unknown preset or when no pillar has fresh factors
    """
    name, weights = resolve_preset(preset)
    averages = pillar_averages(factors, config)

    present = {p: w for p, w in weights.items() if p in averages and w > 0}
    total = sum(present.values())
    if total <= 0:
        raise ValueError("No pillar with fresh factors matches the requested weights")
    normalized = {p: w / total for p, w in present.items()}

    composite = sum(averages[p] * w for p, w in normalized.items())
    score = round_half_up(clamp(composite + cycle + spike, SCORE_MIN, SCORE_MAX), 1)
    logger.debug(f"What-if {name}: {score} over pillars {sorted(normalized)}")

    return AltScore(
        preset=name,
        score=score,
        band=band_for(score, config.bands),
        pillar_scores={p: round_half_up(v, 1) for p, v in averages.items()},
        pillar_weights=normalized,
    )
