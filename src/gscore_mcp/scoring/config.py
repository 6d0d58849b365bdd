"""Scoring configuration: defaults, overrides, validation and digest.

Configuration is held by an explicit ConfigProvider rather than module-level
state, so callers (and tests) can run with distinct configurations side by
side. The provider re-reads its sources on every get_config() call so
operators can push new weights without a redeploy.

Sources, later ones winning:
1. DEFAULT_CONFIG
2. RISK_CONFIG_JSON environment variable (JSON blob)
3. RISK_CONFIG_PATH environment variable (JSON file)
4. Programmatic overrides passed to the provider

Weights are percentage points: enabled factor weights sum to 100, and each
pillar's weight equals the sum of its enabled factors' weights.
"""

from __future__ import annotations

import copy
import json
import logging
import math
import os
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gscore_mcp.scoring.bands import band_for, validate_bands
from gscore_mcp.scoring.models import (
    CompositeConfig,
    CycleConfig,
    FactorConfig,
    GScoreError,
    NormalizationConfig,
    PillarConfig,
    RiskBand,
    RiskConfig,
    SpikeDetectorConfig,
    StalenessRule,
    TransformConfig,
)
from gscore_mcp.utils.canonical import content_hash
from gscore_mcp.utils.validators import parse_utc

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-6
TOTAL_WEIGHT = 100.0
# Upper bound for the spike detector's point cap
SPIKE_MAX_POINTS_CAP = 6.0


class ConfigValidationError(GScoreError):
    """Raised in strict mode when configuration fails validation."""

    def __init__(self, errors: list[str]):
        super().__init__("Invalid configuration: " + "; ".join(errors))
        self.errors = errors


DEFAULT_CONFIG: dict[str, Any] = {
    "model_version": "v3.3.0",
    "pillars": [
        {"key": "liquidity", "label": "Liquidity / Flows", "weight": 35, "color": "blue"},
        {"key": "momentum", "label": "Momentum / Valuation", "weight": 25, "color": "green"},
        {"key": "leverage", "label": "Term Structure / Leverage", "weight": 20, "color": "orange"},
        {"key": "macro", "label": "Macro Overlay", "weight": 10, "color": "gray"},
        {"key": "social", "label": "Social / Attention", "weight": 10, "color": "purple"},
    ],
    "factors": [
        {
            "key": "trend_valuation",
            "label": "Trend & Valuation",
            "pillar": "momentum",
            "weight": 20,
            "enabled": True,
            "staleness": {"ttl_hours": 24},
        },
        {
            "key": "onchain",
            "label": "On-chain Activity",
            "pillar": "momentum",
            "weight": 5,
            "enabled": True,
            "counts_toward": "social",
            "staleness": {"ttl_hours": 96},
        },
        {
            "key": "stablecoins",
            "label": "Stablecoins",
            "pillar": "liquidity",
            "weight": 15,
            "enabled": True,
            "staleness": {"ttl_hours": 24},
        },
        {
            "key": "net_liquidity",
            "label": "Net Liquidity (FRED)",
            "pillar": "liquidity",
            "weight": 15,
            "enabled": True,
            "staleness": {"ttl_hours": 240},
        },
        {
            "key": "etf_flows",
            "label": "ETF Flows",
            "pillar": "liquidity",
            "weight": 5,
            "enabled": True,
            "staleness": {"ttl_hours": 120, "market_dependent": True, "business_days_only": True},
        },
        {
            "key": "term_leverage",
            "label": "Term Structure & Leverage",
            "pillar": "leverage",
            "weight": 20,
            "enabled": True,
            "staleness": {"ttl_hours": 6, "stale_beyond_hours": 12, "market_dependent": True},
        },
        {
            "key": "macro_overlay",
            "label": "Macro Overlay",
            "pillar": "macro",
            "weight": 10,
            "enabled": True,
            "staleness": {"ttl_hours": 24, "market_dependent": True},
        },
        {
            "key": "social_interest",
            "label": "Social Interest",
            "pillar": "social",
            "weight": 10,
            "enabled": True,
            "staleness": {"ttl_hours": 24},
        },
    ],
    "bands": [
        {"key": "aggressive_buy", "label": "Aggressive Buying", "range": [0, 15],
         "color": "green", "recommendation": "Max allocation"},
        {"key": "dca_buy", "label": "Regular DCA Buying", "range": [15, 35],
         "color": "green", "recommendation": "Continue regular purchases"},
        {"key": "moderate_buy", "label": "Moderate Buying", "range": [35, 50],
         "color": "yellow", "recommendation": "Reduce position size"},
        {"key": "hold_wait", "label": "Hold & Wait", "range": [50, 65],
         "color": "orange", "recommendation": "Hold existing positions"},
        {"key": "reduce_risk", "label": "Reduce Risk", "range": [65, 80],
         "color": "red", "recommendation": "Consider taking profits"},
        {"key": "high_risk", "label": "High Risk", "range": [80, 100],
         "color": "red", "recommendation": "Significant risk of correction"},
    ],
    "normalization": {
        "winsor": [0.05, 0.95],
        "logistic_k": 3.0,
        "z_scale": 2.0,
        "z_clip": 4.0,
        "percentile_window_days": 1825,
    },
    "composite": {
        "min_factors_required": 2,
        "smoothing_alpha": 0.1,
    },
    "spike_detector": {
        "enabled": True,
        "lookback_days": 60,
        "ewma_lambda": 0.94,
        "sigma_floor": 0.02,
        "z_clip": 5.0,
        "z_scale": 2.0,
        "activation_z": 2.0,
        "max_points": 6.0,
        "down_moves_raise_risk": False,
    },
    "cycle": {
        "enabled": True,
        "anchor": "2010-07-18",
        "weekly_window_years": 12,
        "z_scale": 2.0,
        "z_clip": 4.0,
        "deviation_threshold": 0.30,
        "max_points": 2.0,
    },
    "transform": {
        "enabled": False,
        "name": "sensitivity",
        "pivot": 50.0,
        "gain": 0.15,
    },
    "freshness": {
        "default_hours": 48,
        "market_timezone": "America/New_York",
    },
}


# ============================================================================
# MERGING & PARSING
# ============================================================================


def _merge_keyed_list(base: list[Any], override: Mapping[str, Any]) -> list[Any]:
    """Merge {key: partial_entry} overrides into a list of keyed entries."""
    out = [copy.deepcopy(entry) for entry in base]
    index = {entry.get("key"): i for i, entry in enumerate(out) if isinstance(entry, dict)}
    for key, patch in override.items():
        if not isinstance(patch, Mapping):
            raise ConfigValidationError([f"override for '{key}' must be an object, got {type(patch).__name__}"])
        if key in index:
            out[index[key]] = deep_merge(out[index[key]], patch)
        else:
            out.append({"key": key, **copy.deepcopy(patch)})
    return out


def deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """
    Recursively merge override into a copy of base.

    Dicts merge; lists and scalars replace. A keyed list (pillars, factors,
    bands) may also be overridden by a {key: partial_entry} mapping.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        elif isinstance(current, list) and isinstance(value, Mapping):
            merged[key] = _merge_keyed_list(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _merge_overrides(base: dict[str, Any], loaded: Any, origin: str) -> dict[str, Any]:
    """
    Merge one override source, which must be a JSON object.

    Raises:
        ConfigValidationError: If the source is not an object or holds a
            malformed keyed-list patch
    """
    if not isinstance(loaded, Mapping):
        raise ConfigValidationError([f"{origin} must hold a JSON object, got {type(loaded).__name__}"])
    return deep_merge(base, loaded)


def parse_config(data: Mapping[str, Any]) -> RiskConfig:
    """
    Build a RiskConfig from its JSON form.

    Raises:
        ConfigValidationError: If required fields are missing or malformed
    """
    try:
        pillars = tuple(
            PillarConfig(
                key=str(p["key"]),
                label=str(p.get("label", p["key"])),
                weight=float(p["weight"]),
                color=str(p.get("color", "")),
            )
            for p in data["pillars"]
        )
        factors = tuple(
            FactorConfig(
                key=str(f["key"]),
                label=str(f.get("label", f["key"])),
                pillar=str(f["pillar"]),
                weight=float(f["weight"]),
                enabled=bool(f.get("enabled", True)),
                counts_toward=f.get("counts_toward"),
                staleness=_parse_staleness(f.get("staleness"), data),
            )
            for f in data["factors"]
        )
        bands = tuple(
            RiskBand(
                key=str(b["key"]),
                label=str(b.get("label", b["key"])),
                lo=float(b["range"][0]),
                hi=float(b["range"][1]),
                color=str(b.get("color", "")),
                recommendation=str(b.get("recommendation", "")),
            )
            for b in data["bands"]
        )
        norm = dict(data.get("normalization", {}))
        if "winsor" in norm:
            norm["winsor"] = tuple(float(x) for x in norm["winsor"])
        freshness = data.get("freshness", {})

        return RiskConfig(
            pillars=pillars,
            factors=factors,
            bands=bands,
            normalization=NormalizationConfig(**norm),
            composite=CompositeConfig(**data.get("composite", {})),
            spike_detector=SpikeDetectorConfig(**data.get("spike_detector", {})),
            cycle=CycleConfig(**data.get("cycle", {})),
            transform=TransformConfig(**data.get("transform", {})),
            default_freshness_hours=float(freshness.get("default_hours", 48)),
            market_timezone=str(freshness.get("market_timezone", "America/New_York")),
            model_version=str(data.get("model_version", "unknown")),
        )
    except (KeyError, TypeError, ValueError, IndexError, AttributeError) as e:
        raise ConfigValidationError([f"malformed configuration: {e!r}"]) from e


def _parse_staleness(raw: Mapping[str, Any] | None, data: Mapping[str, Any]) -> StalenessRule:
    default_hours = float(data.get("freshness", {}).get("default_hours", 48))
    raw = raw or {}
    stale_beyond = raw.get("stale_beyond_hours")
    return StalenessRule(
        ttl_hours=float(raw.get("ttl_hours", default_hours)),
        stale_beyond_hours=float(stale_beyond) if stale_beyond is not None else None,
        market_dependent=bool(raw.get("market_dependent", False)),
        business_days_only=bool(raw.get("business_days_only", False)),
    )


# ============================================================================
# VALIDATION
# ============================================================================


def validate_config(config: RiskConfig) -> tuple[list[str], list[str]]:
    """
    Check structural invariants of a configuration.

    Returns:
        (errors, warnings). Errors break scoring invariants; warnings are
        informational.
    """
    errors: list[str] = []
    warnings: list[str] = []

    pillar_keys = [p.key for p in config.pillars]
    factor_keys = [f.key for f in config.factors]
    if not config.pillars:
        errors.append("no pillars defined")
    if len(set(pillar_keys)) != len(pillar_keys):
        errors.append("duplicate pillar keys")
    if len(set(factor_keys)) != len(factor_keys):
        errors.append("duplicate factor keys")

    for p in config.pillars:
        if not math.isfinite(p.weight):
            errors.append(f"pillar '{p.key}' has non-finite weight {p.weight}")

    for f in config.factors:
        if not math.isfinite(f.weight):
            errors.append(f"factor '{f.key}' has non-finite weight {f.weight}")
        elif f.weight < 0:
            errors.append(f"factor '{f.key}' has negative weight {f.weight}")
        if f.pillar not in pillar_keys:
            errors.append(f"factor '{f.key}' maps to unknown pillar '{f.pillar}'")
        if f.counts_toward is not None and f.counts_toward not in pillar_keys:
            warnings.append(f"factor '{f.key}' displays under unknown pillar '{f.counts_toward}'")
        if not math.isfinite(f.staleness.ttl_hours) or f.staleness.ttl_hours <= 0:
            errors.append(f"factor '{f.key}' has invalid ttl_hours {f.staleness.ttl_hours}")
        elif f.staleness.effective_stale_beyond_hours < f.staleness.ttl_hours:
            errors.append(f"factor '{f.key}' stale_beyond_hours is below ttl_hours")
        if not f.enabled:
            warnings.append(f"factor '{f.key}' is disabled")

    enabled = config.enabled_factors
    if not enabled:
        errors.append("no enabled factors")
    factor_sum = sum(f.weight for f in enabled)
    if abs(factor_sum - TOTAL_WEIGHT) > WEIGHT_TOLERANCE:
        errors.append(f"enabled factor weights sum to {factor_sum:.6f}, expected {TOTAL_WEIGHT}")

    pillar_sum = sum(p.weight for p in config.pillars)
    if abs(pillar_sum - TOTAL_WEIGHT) > WEIGHT_TOLERANCE:
        errors.append(f"pillar weights sum to {pillar_sum:.6f}, expected {TOTAL_WEIGHT}")

    for pillar in config.pillars:
        actual = sum(f.weight for f in enabled if f.pillar == pillar.key)
        if abs(actual - pillar.weight) > WEIGHT_TOLERANCE:
            errors.append(
                f"pillar '{pillar.key}' has weight {pillar.weight} but its factors sum to {actual:.6f}"
            )

    errors.extend(f"bands: {problem}" for problem in validate_bands(config.bands))

    spike = config.spike_detector
    if not 0 < spike.max_points <= SPIKE_MAX_POINTS_CAP:
        errors.append(f"spike_detector.max_points must be in (0, {SPIKE_MAX_POINTS_CAP}]")
    if not 0 < spike.ewma_lambda < 1:
        errors.append("spike_detector.ewma_lambda must be in (0, 1)")
    if spike.lookback_days < 2:
        errors.append("spike_detector.lookback_days must be at least 2")
    if config.cycle.max_points <= 0:
        errors.append("cycle.max_points must be positive")
    if config.cycle.deviation_threshold < 0:
        errors.append("cycle.deviation_threshold must be non-negative")
    if config.composite.min_factors_required < 1:
        errors.append("composite.min_factors_required must be at least 1")

    return errors, warnings


# ============================================================================
# WEIGHT & FRESHNESS HELPERS
# ============================================================================


def normalize_factor_weights(factors: Iterable[FactorConfig]) -> dict[str, float]:
    """
    Renormalize enabled, positive-weight factors to fractions summing to 1.

    Returns:
        factor key -> weight / total; empty when the total weight is 0
    """
    eligible = [f for f in factors if f.enabled and f.weight > 0]
    total = sum(f.weight for f in eligible)
    if total <= 0:
        return {}
    return {f.key: f.weight / total for f in eligible}


def get_freshness_hours(config: RiskConfig, factor_key: str) -> float:
    """TTL in hours for a factor, falling back to the configured default."""
    factor = config.factor(factor_key)
    if factor is None:
        return config.default_freshness_hours
    return factor.staleness.ttl_hours


def is_fresh(timestamp: Any, hours: float, now: datetime | None = None) -> bool:
    """True when timestamp is within `hours` of now; False for missing/unparseable."""
    ts = parse_utc(timestamp)
    if ts is None:
        return False
    now = now or datetime.now(timezone.utc)
    age_hours = (now - ts).total_seconds() / 3600
    return age_hours <= hours


def config_digest(config: RiskConfig) -> str:
    """Deterministic content hash of the sorted-key JSON form of the scoring parameters."""
    return content_hash(config.scoring_dict())


# ============================================================================
# PROVIDER
# ============================================================================


class ConfigProvider:
    """
    Loads, validates and serves the scoring configuration.

    Strict mode raises ConfigValidationError on invalid configuration, but
    get_config() falls back to the last configuration that validated. Lenient
    mode logs validation problems and serves the merged configuration anyway.
    """

    def __init__(
        self,
        strict: bool | None = None,
        overrides: Mapping[str, Any] | None = None,
        env: Mapping[str, str] | None = None,
    ):
        self._env = os.environ if env is None else env
        if strict is None:
            strict = self._env.get("GSCORE_CONFIG_STRICT", "1").lower() not in ("0", "false", "no")
        self.strict = strict
        self._overrides = dict(overrides or {})
        self._last_good: RiskConfig | None = None
        self.last_warnings: list[str] = []

    def _load_raw(self) -> dict[str, Any]:
        raw = copy.deepcopy(DEFAULT_CONFIG)

        env_json = self._env.get("RISK_CONFIG_JSON")
        if env_json:
            try:
                raw = _merge_overrides(raw, json.loads(env_json), "RISK_CONFIG_JSON")
                logger.debug("Config: loaded overrides from RISK_CONFIG_JSON")
            except json.JSONDecodeError as e:
                if self.strict:
                    raise ConfigValidationError([f"RISK_CONFIG_JSON is not valid JSON: {e}"]) from e
                logger.warning(f"Config: RISK_CONFIG_JSON is not valid JSON, ignoring: {e}")
            except ConfigValidationError as e:
                if self.strict:
                    raise
                logger.warning(f"Config: failed to apply RISK_CONFIG_JSON, ignoring: {e}")

        config_path = self._env.get("RISK_CONFIG_PATH")
        if config_path:
            try:
                loaded = json.loads(Path(config_path).read_text(encoding="utf-8"))
                raw = _merge_overrides(raw, loaded, config_path)
                logger.debug(f"Config: loaded overrides from {config_path}")
            except (OSError, json.JSONDecodeError, ConfigValidationError) as e:
                if self.strict:
                    raise ConfigValidationError([f"cannot load {config_path}: {e}"]) from e
                logger.warning(f"Config: failed to load {config_path}, ignoring: {e}")

        if self._overrides:
            try:
                raw = _merge_overrides(raw, self._overrides, "overrides")
            except ConfigValidationError as e:
                if self.strict:
                    raise
                logger.warning(f"Config: failed to apply overrides, ignoring: {e}")
        return raw

    def reload(self) -> RiskConfig:
        """
        Re-read all sources and validate.

        Raises:
            ConfigValidationError: In strict mode, when validation fails
        """
        raw = self._load_raw()
        try:
            config = parse_config(raw)
        except ConfigValidationError:
            if self.strict:
                raise
            logger.warning("Config: malformed overrides, falling back to defaults")
            config = parse_config(DEFAULT_CONFIG)

        errors, warnings = validate_config(config)
        self.last_warnings = warnings
        for w in warnings:
            logger.debug(f"Config validation: {w}")

        if errors:
            if self.strict:
                raise ConfigValidationError(errors)
            for e in errors:
                logger.warning(f"Config validation: {e}")

        self._last_good = config
        return config

    def get_config(self) -> RiskConfig:
        """Current configuration, reloaded and validated on every call."""
        try:
            return self.reload()
        except ConfigValidationError as e:
            if self._last_good is None:
                raise
            logger.error(f"Config reload rejected, serving last known good: {e}")
            return self._last_good

    def get_config_digest(self) -> str:
        return config_digest(self.get_config())

    def get_band_for_score(self, score: float) -> RiskBand:
        return band_for(score, self.get_config().bands)

    def get_freshness_hours(self, factor_key: str) -> float:
        return get_freshness_hours(self.get_config(), factor_key)

    def with_overrides(self, overrides: Mapping[str, Any]) -> ConfigProvider:
        """New provider layering extra overrides on top of this one's."""
        return ConfigProvider(
            strict=self.strict,
            overrides=deep_merge(self._overrides, overrides),
            env=self._env,
        )
