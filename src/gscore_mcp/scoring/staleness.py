"""Staleness classification for factor results.

Each factor moves from unknown to exactly one of fresh, stale or excluded on
every scoring cycle. Only fresh factors count toward the composite; stale
factors keep their score for display.
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytz

from gscore_mcp.scoring.models import (
    EXCLUDED,
    FRESH,
    STALE,
    FactorConfig,
    FactorResult,
    FactorSummary,
    RiskConfig,
    StalenessRule,
    is_valid_score,
)
from gscore_mcp.utils.validators import parse_utc

logger = logging.getLogger(__name__)

# Reasons surfaced on FactorSummary.reason
REASON_COMPUTATION_FAILED = "computation_failed"
REASON_INVALID_SCORE = "invalid_score"
REASON_NO_TIMESTAMP = "no_timestamp"
REASON_DISABLED = "disabled"
REASON_MISSING_RESULT = "missing_result"
REASON_STALE_BEYOND_TTL = "stale_beyond_ttl"
REASON_WEEKEND_FRIDAY = "fresh_weekend_data_from_friday"
REASON_RECENT_BUSINESS_DAY = "fresh_from_recent_business_day"
REASON_STALE_WEEKEND = "stale_weekend_old_data"
REASON_STALE_BUSINESS_DAYS = "stale_business_days_exceeded"

# Age above which a fresh-or-stale timestamp is worth a debug note
AGE_WARN_HOURS = 24


@dataclass(frozen=True)
class StalenessVerdict:
    status: str
    reason: str | None
    age_hours: float


def is_weekend(dt: datetime) -> bool:
    return dt.weekday() >= 5


def most_recent_business_day_start(now: datetime, tz_name: str = "America/New_York") -> datetime:
    """
    Midnight (market time) of the most recent weekday at or before now.

    Args:
        now: Aware datetime
        tz_name: Market timezone

    Returns:
        Aware UTC datetime of that weekday's local midnight
    """
    tz = pytz.timezone(tz_name)
    local = now.astimezone(tz)
    day = local.date()
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    start = tz.localize(datetime(day.year, day.month, day.day))
    return start.astimezone(timezone.utc)


def check_staleness(
    last_utc: datetime,
    rule: StalenessRule,
    now: datetime,
    tz_name: str = "America/New_York",
) -> StalenessVerdict:
    """
    Classify one timestamp against a staleness rule.

    Order: TTL, then market-aware grace, then the stale-beyond cutoff.
    Weekend and business-day checks run in the market timezone.
    """
    age_hours = (now - last_utc).total_seconds() / 3600

    if age_hours <= rule.ttl_hours:
        return StalenessVerdict(FRESH, None, age_hours)

    weekend_now = is_weekend(now.astimezone(pytz.timezone(tz_name)))
    if rule.market_dependent or rule.business_days_only:
        business_day_start = most_recent_business_day_start(now, tz_name)
        if rule.market_dependent and weekend_now and last_utc >= business_day_start:
            return StalenessVerdict(FRESH, REASON_WEEKEND_FRIDAY, age_hours)
        if rule.business_days_only and last_utc >= business_day_start:
            return StalenessVerdict(FRESH, REASON_RECENT_BUSINESS_DAY, age_hours)

    if age_hours > rule.effective_stale_beyond_hours:
        return StalenessVerdict(EXCLUDED, REASON_STALE_BEYOND_TTL, age_hours)

    if rule.market_dependent and weekend_now:
        reason = REASON_STALE_WEEKEND
    elif rule.business_days_only:
        reason = REASON_STALE_BUSINESS_DAYS
    else:
        reason = REASON_STALE_BEYOND_TTL
    return StalenessVerdict(STALE, reason, age_hours)


def classify_factor(
    factor: FactorConfig,
    result: FactorResult | None,
    now: datetime | None = None,
    tz_name: str = "America/New_York",
) -> FactorSummary:
    """
    Build the classified summary for one configured factor.

    Args:
        factor: Factor configuration (weight, pillar, staleness rule)
        result: Source output, or None when the source produced nothing
        now: Evaluation time (defaults to current UTC time)
        tz_name: Market timezone for weekend/business-day grace

    Returns:
        FactorSummary with status and reason set
    """
    now = now or datetime.now(timezone.utc)

    def summary(status: str, score: float | None, reason: str | None, last_utc: str | None = None) -> FactorSummary:
        return FactorSummary(
            key=factor.key,
            label=factor.label,
            pillar=factor.pillar,
            weight=factor.weight,
            score=score,
            status=status,
            last_updated_utc=last_utc,
            reason=reason,
            source=result.source if result else None,
            details=result.details if result else (),
            counts_toward=factor.counts_toward,
        )

    if not factor.enabled:
        return summary(EXCLUDED, None, REASON_DISABLED, result.last_utc if result else None)
    if result is None:
        return summary(EXCLUDED, None, REASON_MISSING_RESULT)
    if result.score is None:
        return summary(EXCLUDED, None, result.reason or REASON_COMPUTATION_FAILED, result.last_utc)
    if not is_valid_score(result.score):
        logger.warning(f"Staleness: {factor.key} returned invalid score {result.score!r}")
        return summary(EXCLUDED, None, REASON_INVALID_SCORE, result.last_utc)

    last = parse_utc(result.last_utc)
    if last is None:
        return summary(EXCLUDED, None, REASON_NO_TIMESTAMP, result.last_utc)

    verdict = check_staleness(last, factor.staleness, now, tz_name)
    if verdict.age_hours > AGE_WARN_HOURS:
        logger.debug(f"Staleness: {factor.key} last_utc={result.last_utc} age={verdict.age_hours:.1f}h")

    score = float(result.score)
    # Excluded factors carry no score; stale ones keep theirs for display
    if verdict.status == EXCLUDED:
        return summary(EXCLUDED, None, verdict.reason, result.last_utc)
    reason = verdict.reason if verdict.reason is not None else result.reason
    return summary(verdict.status, score, reason, result.last_utc)


def classify_factors(
    results: Mapping[str, FactorResult],
    config: RiskConfig,
    now: datetime | None = None,
) -> list[FactorSummary]:
    """
    Classify every configured factor, in configuration order.

    Results for keys not in the configuration are ignored.
    """
    now = now or datetime.now(timezone.utc)
    unknown = set(results) - {f.key for f in config.factors}
    if unknown:
        logger.debug(f"Staleness: ignoring results for unconfigured factors {sorted(unknown)}")

    summaries = [
        classify_factor(factor, results.get(factor.key), now, config.market_timezone)
        for factor in config.factors
    ]
    counts = {s: sum(1 for f in summaries if f.status == s) for s in (FRESH, STALE, EXCLUDED)}
    logger.info(
        f"Staleness: {counts[FRESH]} fresh, {counts[STALE]} stale, {counts[EXCLUDED]} excluded"
    )
    return summaries


def age_hours(last_utc: str | None, now: datetime | None = None) -> float:
    """Age of a timestamp in hours; NaN when missing or unparseable."""
    ts = parse_utc(last_utc)
    if ts is None:
        return math.nan
    now = now or datetime.now(timezone.utc)
    return (now - ts).total_seconds() / 3600
