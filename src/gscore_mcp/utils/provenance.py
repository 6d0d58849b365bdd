"""Response metadata, per-source provenance and error envelopes."""

from datetime import datetime
from typing import Any

from gscore_mcp import SCHEMA_VERSION, SERVER_VERSION
from gscore_mcp.utils.validators import to_utc_iso


def build_meta(
    tool: str,
    duration_ms: float | None = None,
    config_digest: str | None = None,
) -> dict[str, Any]:
    """
    Build the metadata block attached to every tool response.

    Args:
        tool: Name of the tool producing this response
        duration_ms: Execution time in milliseconds (optional)
        config_digest: Digest of the configuration the response was computed
            or checked against (optional)

    Returns:
        Metadata dict with version info
    """
    meta: dict[str, Any] = {
        "server_version": SERVER_VERSION,
        "schema_version": SCHEMA_VERSION,
        "tool": tool,
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    if config_digest is not None:
        meta["config_digest"] = config_digest
    return meta


def build_provenance(
    source: str,
    as_of: datetime | str | None = None,
    factor: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Build the provenance entry for one upstream source.

    Datetimes are written as second-precision UTC with a Z suffix, the same
    form as every other timestamp in the snapshot.

    Args:
        source: Data source name (e.g., "yfinance", "feed:etf_flows")
        as_of: Timestamp of data freshness
        factor: Factor key the source fed, if any
        **kwargs: Additional provenance fields

    Returns:
        Provenance dict with a warnings list
    """
    prov: dict[str, Any] = {"source": source}
    if factor is not None:
        prov["factor"] = factor

    if isinstance(as_of, datetime):
        prov["as_of"] = to_utc_iso(as_of)
    elif as_of:
        prov["as_of"] = as_of

    prov.update(kwargs)
    prov.setdefault("warnings", [])
    return prov


def factor_provenance(key: str, result: Any) -> list[Any]:
    """
    Provenance entries for one factor result.

    Entries the source attached are tagged with the factor key. A source that
    attached none gets a single entry built from its source name and
    timestamp; a null score adds its reason as a warning.
    """
    if result.provenance:
        return [{**p, "factor": key} if isinstance(p, dict) else p for p in result.provenance]

    warnings = [result.reason] if result.score is None and result.reason else []
    return [build_provenance(result.source or f"factor:{key}", result.last_utc, factor=key, warnings=warnings)]


def build_error_response(
    error_type: str,
    message: str,
    retry_after_seconds: int | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """
    Build standardized error response.

    Args:
        error_type: Type of error (forbidden, rate_limited, insufficient_factors,
            config_invalid, not_found, internal_error)
        message: Human-readable error message
        retry_after_seconds: Seconds to wait before retry (for rate limiting)
        **extra: Additional context fields

    Returns:
        Error response dict with ok=False
    """
    response: dict[str, Any] = {
        "ok": False,
        "error": message,
        "error_type": error_type,
        "meta": build_meta("error"),
    }

    if retry_after_seconds is not None:
        response["retry_after_seconds"] = retry_after_seconds

    response.update(extra)
    return response
