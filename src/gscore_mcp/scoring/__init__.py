"""Composite scoring engine."""

from gscore_mcp.scoring.aggregator import (
    InsufficientFactorsError,
    aggregate,
    apply_sensitivity_transform,
    build_composite_result,
    health_for,
)
from gscore_mcp.scoring.bands import band_for, validate_bands
from gscore_mcp.scoring.config import (
    ConfigProvider,
    ConfigValidationError,
    normalize_factor_weights,
    validate_config,
)
from gscore_mcp.scoring.models import (
    AdjustmentResult,
    CompositeResult,
    FactorResult,
    FactorSummary,
    GScoreError,
    RiskBand,
    RiskConfig,
)
from gscore_mcp.scoring.staleness import classify_factor, classify_factors
from gscore_mcp.scoring.validator import (
    CompositeValidation,
    log_validation_result,
    validate_composite_score,
    validate_factor_weights,
)

__all__ = [
    # Aggregation
    "InsufficientFactorsError",
    "aggregate",
    "apply_sensitivity_transform",
    "build_composite_result",
    "health_for",
    # Bands
    "band_for",
    "validate_bands",
    # Config
    "ConfigProvider",
    "ConfigValidationError",
    "normalize_factor_weights",
    "validate_config",
    # Models
    "AdjustmentResult",
    "CompositeResult",
    "FactorResult",
    "FactorSummary",
    "GScoreError",
    "RiskBand",
    "RiskConfig",
    # Staleness
    "classify_factor",
    "classify_factors",
    # Validation
    "CompositeValidation",
    "log_validation_result",
    "validate_composite_score",
    "validate_factor_weights",
]
