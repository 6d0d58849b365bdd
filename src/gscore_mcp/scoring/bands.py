"""Risk band mapping.

The one place scores are mapped to bands. The aggregator, the what-if tool and
the validator all call band_for().
"""

from collections.abc import Sequence

from gscore_mcp.scoring.models import RiskBand
from gscore_mcp.utils.transforms import is_finite

SCORE_MIN = 0.0
SCORE_MAX = 100.0


def band_for(score: float, bands: Sequence[RiskBand]) -> RiskBand:
    """
    Map a composite score to its risk band.

    Bands are scanned in ascending order and the first half-open [lo, hi)
    range containing the score wins. A score at or above every range (100)
    maps to the highest band; a score below every range maps to the lowest.

    Args:
        score: Composite score, nominally in [0, 100]
        bands: Configured bands (any order)

    Returns:
        The matching band

    Raises:
        ValueError: If no bands are configured or the score is not finite
    """
    if not bands:
        raise ValueError("No risk bands configured")
    if not is_finite(score):
        raise ValueError(f"Cannot map non-finite score {score!r} to a band")

    ordered = sorted(bands, key=lambda b: b.lo)
    if score < ordered[0].lo:
        return ordered[0]
    for band in ordered:
        if band.contains(score):
            return band
    return ordered[-1]


def validate_bands(bands: Sequence[RiskBand]) -> list[str]:
    """
    Check that bands cover [0, 100] without gaps or overlaps.

    Returns:
        List of problems (empty when the band table is valid)
    """
    problems: list[str] = []
    if not bands:
        return ["no bands defined"]

    non_finite = [b.key for b in bands if not (is_finite(b.lo) and is_finite(b.hi))]
    if non_finite:
        return [f"band '{key}' has a non-finite bound" for key in non_finite]

    ordered = sorted(bands, key=lambda b: b.lo)
    for band in ordered:
        if band.hi <= band.lo:
            problems.append(f"band '{band.key}' has empty range [{band.lo}, {band.hi})")

    if ordered[0].lo != SCORE_MIN:
        problems.append(f"bands start at {ordered[0].lo}, expected {SCORE_MIN}")
    if ordered[-1].hi != SCORE_MAX:
        problems.append(f"bands end at {ordered[-1].hi}, expected {SCORE_MAX}")

    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.hi < nxt.lo:
            problems.append(f"gap between '{prev.key}' (ends {prev.hi}) and '{nxt.key}' (starts {nxt.lo})")
        elif prev.hi > nxt.lo:
            problems.append(f"overlap between '{prev.key}' (ends {prev.hi}) and '{nxt.key}' (starts {nxt.lo})")

    keys = [b.key for b in bands]
    if len(set(keys)) != len(keys):
        problems.append("duplicate band keys")

    return problems
