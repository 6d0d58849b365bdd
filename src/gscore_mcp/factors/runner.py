"""Concurrent factor collection with per-source failure isolation."""

import asyncio
import logging
import os
from collections.abc import Sequence
from time import perf_counter

from gscore_mcp.factors.base import FactorSource
from gscore_mcp.scoring.models import FactorResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = float(os.environ.get("FACTOR_TIMEOUT_SECONDS", "30"))


async def _run_source(source: FactorSource, timeout_s: float) -> FactorResult:
    start = perf_counter()
    try:
        result = await asyncio.wait_for(source.compute(), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(f"Factor {source.key}: timed out after {timeout_s:.0f}s")
        return FactorResult.failed(f"{source.key}_error", details=({"error": "timeout"},))
    except Exception as e:
        logger.warning(f"Factor {source.key}: {type(e).__name__}: {e}")
        return FactorResult.failed(f"{source.key}_error", details=({"error": type(e).__name__},))

    logger.debug(f"Factor {source.key}: score={result.score} in {(perf_counter() - start) * 1000:.0f}ms")
    return result


async def collect_factor_results(
    sources: Sequence[FactorSource],
    timeout_s: float | None = None,
) -> dict[str, FactorResult]:
    """
    Run every source concurrently; each gets its own timeout and error handling.

    A failing or slow source yields FactorResult.failed("<key>_error") and
    never affects the others.

    Returns:
        factor key -> FactorResult, for every source
    """
    timeout = DEFAULT_TIMEOUT_SECONDS if timeout_s is None else timeout_s
    results = await asyncio.gather(*(_run_source(s, timeout) for s in sources))
    collected = {source.key: result for source, result in zip(sources, results)}
    failed = [k for k, r in collected.items() if r.score is None]
    logger.info(f"Collected {len(collected)} factors ({len(failed)} without score: {failed})")
    return collected
