"""Bitcoin G-Score MCP Server using FastMCP."""

import asyncio
import hmac
import json
import logging
import os
from typing import Any

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from gscore_mcp import SCHEMA_VERSION, SERVER_VERSION
from gscore_mcp.data.btc_client import shutdown_executor
from gscore_mcp.resources.snapshot_resource import ResourceNotFoundError, read_latest_resource
from gscore_mcp.tools import (
    audit_latest,
    get_config,
    get_history,
    get_latest,
    get_runtime,
    refresh_gscore,
    what_if_score,
)
from gscore_mcp.utils.canonical import sanitize_nan_inf
from gscore_mcp.utils.provenance import build_error_response

# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)

# Create FastMCP server instance
mcp = FastMCP(
    name="bitcoin-gscore",
)

# Error type -> HTTP status for the refresh route
_ERROR_STATUS = {
    "forbidden": 403,
    "rate_limited": 429,
    "insufficient_factors": 503,
    "config_invalid": 500,
    "internal_error": 500,
}


def _dumps(result: dict[str, Any]) -> str:
    return json.dumps(sanitize_nan_inf(result), indent=2, default=str)


# ============================================================================
# TOOLS
# ============================================================================


@mcp.tool(name="refresh_gscore")
async def refresh_gscore_tool(force: bool = True) -> str:
    """
    Recompute the Bitcoin G-Score composite.

    Collects every factor concurrently, classifies staleness, renormalizes
    weights over fresh factors, applies cycle and spike adjustments, maps the
    result to a risk band and persists the latest snapshot (plus at most one
    history row per UTC day).

    Args:
        force: Recompute even if a snapshot exists (default: true)

    Returns:
        JSON snapshot with composite_score, band, health, factors and
        adjustments; or an error with error_type insufficient_factors (health
        red, previous snapshot kept) or config_invalid
    """
    result = await refresh_gscore(force=force)
    return _dumps(result)


@mcp.tool(name="get_latest")
async def get_latest_tool() -> str:
    """
    Get the latest persisted G-Score snapshot without recomputing.

    Returns:
        JSON snapshot with per-factor data age in hours
    """
    result = await get_latest()
    return _dumps(result)


@mcp.tool(name="get_history")
async def get_history_tool(range: str = "90d", include_deltas: bool = True) -> str:
    """
    Get daily G-Score history and per-factor day-over-day deltas.

    Args:
        range: 30d, 90d, 180d or 1y (default: 90d)
        include_deltas: Include factor deltas with their basis (default: true)

    Returns:
        JSON with history points, oldest first, and deltas
    """
    result = await get_history(range_=range, include_deltas=include_deltas)
    return _dumps(result)


@mcp.tool(name="what_if_score")
async def what_if_score_tool(
    preset: str = "official_30_30",
    pillar_weights: dict[str, float] | None = None,
) -> str:
    """
    Re-score the latest snapshot under alternative pillar weights.

    Args:
        preset: official_30_30, liq_35_25 or mom_25_35
        pillar_weights: Custom weights by pillar, e.g. {"liquidity": 0.4, "momentum": 0.2,
            "leverage": 0.2, "macro": 0.1, "social": 0.1}; overrides preset

    Returns:
        JSON with official vs alternative score, bands and difference
    """
    result = await what_if_score(preset=preset, pillar_weights=pillar_weights)
    return _dumps(result)


@mcp.tool(name="audit_latest")
async def audit_latest_tool() -> str:
    """
    Independently recompute the latest composite and check it within 0.5 points.

    Also checks that enabled factor weights sum to 100% and whether the
    snapshot was produced under the current configuration digest.

    Returns:
        JSON with valid, delta, expected vs actual and weight validation
    """
    result = await audit_latest()
    return _dumps(result)


@mcp.tool(name="get_config")
async def get_config_tool() -> str:
    """
    Get the active scoring configuration.

    Returns:
        JSON with pillars, factors, bands, adjustment settings and digest
    """
    result = await get_config()
    return _dumps(result)


# ============================================================================
# RESOURCES
# ============================================================================


@mcp.resource("gscore://latest")
def get_latest_snapshot() -> str:
    """
    Latest G-Score snapshot as JSON.

    Must call refresh_gscore first to produce a snapshot.
    """
    try:
        text, _ = read_latest_resource(get_runtime().store)
        return text
    except ResourceNotFoundError as e:
        return str(e)


# ============================================================================
# HTTP ROUTES
# ============================================================================


def _supplied_token(request: Request) -> str | None:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return request.query_params.get("token")


def _json_response(result: dict[str, Any], status: int | None = None) -> JSONResponse:
    if status is None:
        status = 200 if result.get("ok") else _ERROR_STATUS.get(result.get("error_type", ""), 500)
    headers = {"Cache-Control": "no-store"}
    if result.get("retry_after_seconds") is not None:
        headers["Retry-After"] = str(result["retry_after_seconds"])
    return JSONResponse(sanitize_nan_inf(result), status_code=status, headers=headers)


@mcp.custom_route("/api/refresh", methods=["GET", "POST"])
async def refresh_endpoint(request: Request) -> JSONResponse:
    """
    GET: rate-limited per caller, returns the latest snapshot (computing one
    if none exists). POST: forces a recompute; requires the refresh token
    when REFRESH_TOKEN is set.
    """
    runtime = get_runtime()
    try:
        if request.method == "POST":
            if runtime.refresh_token:
                supplied = _supplied_token(request) or ""
                if not hmac.compare_digest(supplied.encode(), runtime.refresh_token.encode()):
                    logger.warning("Refresh: rejected POST with missing or invalid token")
                    return _json_response(build_error_response("forbidden", "Invalid refresh token"))

            allowed, retry_after = runtime.throttle.acquire_write(runtime.min_write_interval_s)
            if not allowed:
                return _json_response(
                    build_error_response("rate_limited", "Refresh already ran recently", retry_after)
                )
            try:
                result = await refresh_gscore(force=True, runtime=runtime)
            except Exception:
                runtime.throttle.release_write()
                raise
            if not result.get("ok"):
                runtime.throttle.release_write()
            return _json_response(result)

        caller = request.client.host if request.client else "unknown"
        allowed, retry_after = runtime.throttle.allow(caller, runtime.rate_limit_s)
        if not allowed:
            return _json_response(build_error_response("rate_limited", "Too many requests", retry_after))
        result = await refresh_gscore(force=False, runtime=runtime)
        return _json_response(result)
    except Exception as e:
        logger.exception("Refresh endpoint failed")
        return _json_response(build_error_response("internal_error", f"Refresh failed: {e}"))


# ============================================================================
# ENTRY POINT
# ============================================================================


def main() -> None:
    """Run the MCP server."""
    logger.info(f"Starting Bitcoin G-Score MCP Server v{SERVER_VERSION} (schema v{SCHEMA_VERSION})")
    transport = os.environ.get("MCP_TRANSPORT", "stdio").lower()
    try:
        if transport == "stdio":
            mcp.run()
        else:
            mcp.run(
                transport=transport,
                host=os.environ.get("MCP_HOST", "127.0.0.1"),
                port=int(os.environ.get("MCP_PORT", "8000")),
            )
    finally:
        asyncio.run(shutdown_executor())


if __name__ == "__main__":
    main()
