"""Factor source interface and the file-feed source."""

import json
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

from gscore_mcp.scoring.models import FactorResult

logger = logging.getLogger(__name__)


@runtime_checkable
class FactorSource(Protocol):
    """Anything that can produce one factor's normalized result."""

    key: str

    async def compute(self) -> FactorResult: ...


class FeedFileSource:
    """
    Reads a factor result written by an external collector.

    The collector drops <feed_dir>/<key>.json in the factor input shape:
    {score, last_utc, source, details, reason?, provenance?}.
    """

    def __init__(self, key: str, feed_dir: str | Path | None = None):
        if feed_dir is None:
            feed_dir = os.environ.get("FACTOR_FEED_DIR", "data/factors")
        self.key = key
        self.path = Path(feed_dir) / f"{key}.json"

    def __repr__(self) -> str:
        return f"FeedFileSource({self.key!r}, {str(self.path.parent)!r})"

    async def compute(self) -> FactorResult:
        """
        Returns:
            Parsed FactorResult; a failed result with reason feed_missing when
            the collector has not written the file

        Raises:
            ValueError: If the file is not a JSON object
        """
        if not self.path.exists():
            logger.info(f"Feed {self.key}: {self.path} not found")
            return FactorResult.failed("feed_missing", source=f"feed:{self.key}")

        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Feed {self.path} must contain a JSON object")

        result = FactorResult.from_dict(data)
        if result.source is None:
            result = FactorResult(
                score=result.score,
                last_utc=result.last_utc,
                source=f"feed:{self.key}",
                details=result.details,
                reason=result.reason,
                provenance=result.provenance,
            )
        return result
