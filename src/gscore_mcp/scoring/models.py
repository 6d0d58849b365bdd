"""Data model for the composite scoring engine."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any

from gscore_mcp.utils.validators import coerce_score

# Factor statuses, assigned only by the staleness classifier
FRESH = "fresh"
STALE = "stale"
EXCLUDED = "excluded"
FACTOR_STATUSES = (FRESH, STALE, EXCLUDED)

# Snapshot health
HEALTH_GREEN = "green"
HEALTH_YELLOW = "yellow"
HEALTH_RED = "red"

# Display-only keys of pillars, factors and bands
PRESENTATION_FIELDS = frozenset({"label", "color", "recommendation"})


class GScoreError(Exception):
    """Base class for scoring engine errors."""

    pass


# ============================================================================
# CONFIGURATION ENTITIES
# ============================================================================


@dataclass(frozen=True)
class StalenessRule:
    """Time-to-live policy for one factor's underlying data."""

    ttl_hours: float
    stale_beyond_hours: float | None = None
    market_dependent: bool = False
    business_days_only: bool = False

    @property
    def effective_stale_beyond_hours(self) -> float:
        """Second threshold past which a factor is excluded outright (default 2x TTL)."""
        if self.stale_beyond_hours is not None:
            return self.stale_beyond_hours
        return self.ttl_hours * 2


@dataclass(frozen=True)
class PillarConfig:
    key: str
    label: str
    weight: float
    color: str = ""


@dataclass(frozen=True)
class FactorConfig:
    key: str
    label: str
    pillar: str
    weight: float
    enabled: bool = True
    counts_toward: str | None = None
    staleness: StalenessRule = field(default_factory=lambda: StalenessRule(ttl_hours=48))

    @property
    def display_pillar(self) -> str:
        """Pillar shown in the UI; never used for composite math."""
        return self.counts_toward or self.pillar


@dataclass(frozen=True)
class RiskBand:
    """Half-open score range [lo, hi) with its presentation metadata."""

    key: str
    label: str
    lo: float
    hi: float
    color: str = ""
    recommendation: str = ""

    @property
    def range(self) -> tuple[float, float]:
        return (self.lo, self.hi)

    def contains(self, score: float) -> bool:
        return self.lo <= score < self.hi

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "range": [self.lo, self.hi],
            "color": self.color,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class NormalizationConfig:
    winsor: tuple[float, float] = (0.05, 0.95)
    logistic_k: float = 3.0
    z_scale: float = 2.0
    z_clip: float = 4.0
    percentile_window_days: int = 1825


@dataclass(frozen=True)
class CompositeConfig:
    min_factors_required: int = 2
    smoothing_alpha: float = 0.1


@dataclass(frozen=True)
class SpikeDetectorConfig:
    """Fast spike detector: 1-day return z-score against EWMA volatility."""

    enabled: bool = True
    lookback_days: int = 60
    ewma_lambda: float = 0.94
    sigma_floor: float = 0.02
    z_clip: float = 5.0
    z_scale: float = 2.0
    activation_z: float = 2.0
    max_points: float = 6.0
    down_moves_raise_risk: bool = False


@dataclass(frozen=True)
class CycleConfig:
    """Slow cycle adjustment: residual against a power-law trend of weekly closes."""

    enabled: bool = True
    anchor: str = "2010-07-18"
    weekly_window_years: int = 12
    z_scale: float = 2.0
    z_clip: float = 4.0
    deviation_threshold: float = 0.30
    max_points: float = 2.0


@dataclass(frozen=True)
class TransformConfig:
    """Optional nonlinear sensitivity stretch applied to the raw composite."""

    enabled: bool = False
    name: str = "sensitivity"
    pivot: float = 50.0
    gain: float = 0.15

    def to_snapshot(self) -> dict[str, Any]:
        if not self.enabled:
            return {"name": "none", "enabled": False}
        return {"name": self.name, "enabled": True, "pivot": self.pivot, "gain": self.gain}


@dataclass(frozen=True)
class RiskConfig:
    """The single authoritative scoring configuration."""

    pillars: tuple[PillarConfig, ...]
    factors: tuple[FactorConfig, ...]
    bands: tuple[RiskBand, ...]
    normalization: NormalizationConfig = NormalizationConfig()
    composite: CompositeConfig = CompositeConfig()
    spike_detector: SpikeDetectorConfig = SpikeDetectorConfig()
    cycle: CycleConfig = CycleConfig()
    transform: TransformConfig = TransformConfig()
    default_freshness_hours: float = 48.0
    market_timezone: str = "America/New_York"
    model_version: str = "v3.3.0"

    @property
    def enabled_factors(self) -> tuple[FactorConfig, ...]:
        return tuple(f for f in self.factors if f.enabled)

    def factor(self, key: str) -> FactorConfig | None:
        for f in self.factors:
            if f.key == key:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly form, as served by get_config."""
        data = asdict(self)
        data["bands"] = [b.to_dict() for b in self.bands]
        return data

    def scoring_dict(self) -> dict[str, Any]:
        """
        The parameters that affect a score, the input to the config digest.

        Labels, colors, recommendations and model_version are presentation
        only and left out, so renaming a band does not change the digest.
        """
        data = self.to_dict()
        del data["model_version"]
        for section in ("pillars", "factors", "bands"):
            data[section] = [
                {k: v for k, v in entry.items() if k not in PRESENTATION_FIELDS} for entry in data[section]
            ]
        return data


# ============================================================================
# PER-CYCLE ENTITIES
# ============================================================================


@dataclass(frozen=True)
class FactorResult:
    """Normalized output of one factor source."""

    score: float | None
    last_utc: str | None = None
    source: str | None = None
    details: tuple[Any, ...] = ()
    reason: str | None = None
    provenance: tuple[Any, ...] = ()

    @classmethod
    def failed(cls, reason: str, **kwargs: Any) -> FactorResult:
        """Null-score payload for a source that threw, timed out or had no data."""
        return cls(score=None, reason=reason, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FactorResult:
        return cls(
            score=coerce_score(data.get("score")),
            last_utc=data.get("last_utc") or data.get("lastUpdated"),
            source=data.get("source"),
            details=tuple(data.get("details") or ()),
            reason=data.get("reason"),
            provenance=tuple(data.get("provenance") or ()),
        )


@dataclass(frozen=True)
class FactorSummary:
    """One factor's classified state within a snapshot."""

    key: str
    label: str
    pillar: str
    weight: float
    score: float | None
    status: str
    last_updated_utc: str | None = None
    reason: str | None = None
    source: str | None = None
    details: tuple[Any, ...] = ()
    counts_toward: str | None = None

    def __post_init__(self) -> None:
        if self.status not in FACTOR_STATUSES:
            raise ValueError(f"Invalid status '{self.status}'. Must be one of: {FACTOR_STATUSES}")
        if self.score is None and self.status != EXCLUDED:
            raise ValueError(f"Factor '{self.key}' has no score but status '{self.status}'")
        if self.status == FRESH and not is_valid_score(self.score):
            raise ValueError(f"Fresh factor '{self.key}' needs a score in [0, 100], got {self.score}")

    @property
    def is_usable(self) -> bool:
        return self.status == FRESH and is_valid_score(self.score)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "pillar": self.pillar,
            "weight": self.weight,
            "score": self.score,
            "status": self.status,
            "last_utc": self.last_updated_utc,
            "reason": self.reason,
            "source": self.source,
            "details": list(self.details),
        }
        if self.counts_toward:
            out["counts_toward"] = self.counts_toward
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FactorSummary:
        """Rebuild from a persisted snapshot entry."""
        score = coerce_score(data.get("score"))
        return cls(
            key=data["key"],
            label=data.get("label", data["key"]),
            pillar=data.get("pillar", ""),
            weight=float(data.get("weight", 0.0)),
            score=None if score is None or not math.isfinite(score) else score,
            status=data.get("status", EXCLUDED),
            last_updated_utc=data.get("last_utc"),
            reason=data.get("reason"),
            source=data.get("source"),
            details=tuple(data.get("details") or ()),
            counts_toward=data.get("counts_toward"),
        )


@dataclass(frozen=True)
class AdjustmentResult:
    """Bounded additive point delta with its diagnostic payload."""

    adj_pts: float
    last_utc: str | None = None
    source: str | None = None
    reason: str | None = None
    diagnostics: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def noop(cls, reason: str, **kwargs: Any) -> AdjustmentResult:
        return cls(adj_pts=0.0, reason=reason, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "adj_pts": self.adj_pts,
            **self.diagnostics,
            "last_utc": self.last_utc,
            "source": self.source,
        }
        if self.reason is not None:
            out["reason"] = self.reason
        return out


@dataclass(frozen=True)
class CompositeResult:
    """Output of one scoring cycle. Never mutated after creation."""

    raw_composite: int
    transformed_composite: float
    cycle: float
    spike: float
    final_composite: float
    band: RiskBand
    included_factor_keys: tuple[str, ...]
    excluded_factor_keys: tuple[str, ...]
    total_effective_weight: float
    weights: dict[str, float] = field(default_factory=dict)

    @property
    def adjustments(self) -> dict[str, float]:
        return {"cycle": self.cycle, "spike": self.spike}


def is_valid_score(score: Any) -> bool:
    """True for finite numbers within [0, 100]."""
    if score is None or isinstance(score, bool):
        return False
    try:
        value = float(score)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and 0.0 <= value <= 100.0
