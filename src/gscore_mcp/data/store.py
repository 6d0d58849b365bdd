"""On-disk persistence: the latest snapshot and the daily history log.

Both files have a single writer (the refresh pipeline). The latest snapshot
is replaced atomically; the history log is append-only JSON lines with at
most one row per UTC day.
"""

import json
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gscore_mcp.utils.canonical import pretty_dumps, sanitize_nan_inf
from gscore_mcp.utils.transforms import is_finite, round_half_up
from gscore_mcp.utils.validators import parse_utc

logger = logging.getLogger(__name__)

LATEST_FILENAME = "latest.json"
HISTORY_FILENAME = "history.jsonl"
DEFAULT_HISTORY_MIN_HOURS = 20.0

BASIS_PREVIOUS_DAY = "previous_day"
BASIS_PREVIOUS_ROW = "previous_available_row"
BASIS_INSUFFICIENT = "insufficient_history"


class SnapshotStore:
    """File-backed store for the latest snapshot and history rows."""

    def __init__(self, data_dir: str | Path | None = None):
        if data_dir is None:
            data_dir = os.environ.get("GSCORE_DATA_DIR", "data")
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.latest_path = self.data_dir / LATEST_FILENAME
        self.history_path = self.data_dir / HISTORY_FILENAME

    # ------------------------------------------------------------------
    # latest
    # ------------------------------------------------------------------

    def read_latest(self) -> dict[str, Any] | None:
        """Latest snapshot, or None when missing or unreadable."""
        if not self.latest_path.exists():
            return None
        try:
            return json.loads(self.latest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Store: {self.latest_path} is not valid JSON ({e}); treating as absent")
            return None

    def write_latest(self, snapshot: Mapping[str, Any]) -> Path:
        """
        Atomically replace the latest snapshot.

        The document is serialized fully in memory, written to a temp file in
        the same directory, then moved into place with os.replace, so readers
        see either the old or the new snapshot, never a partial one.
        """
        payload = pretty_dumps(sanitize_nan_inf(dict(snapshot))) + "\n"
        fd, tmp_name = tempfile.mkstemp(prefix=".latest-", suffix=".tmp", dir=self.data_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.latest_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.info(f"Store: wrote {self.latest_path} ({len(payload)} bytes)")
        return self.latest_path

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    def read_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """
        History rows, oldest first.

        Args:
            limit: Return only the most recent `limit` rows

        Malformed lines are skipped with a warning.
        """
        if not self.history_path.exists():
            return []
        rows: list[dict[str, Any]] = []
        with self.history_path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Store: skipping malformed history line {lineno}")
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return rows

    def append_history_if_due(
        self,
        row: Mapping[str, Any],
        min_hours: float = DEFAULT_HISTORY_MIN_HOURS,
    ) -> bool:
        """
        Append a row unless one already covers this period.

        Skips when the last row is from the same UTC day as `row`, or when
        fewer than `min_hours` have elapsed since it.

        Returns:
            True if a row was appended
        """
        new_ts = parse_utc(row.get("as_of_utc"))
        if new_ts is None:
            raise ValueError("History row needs a parseable as_of_utc")

        last = self.read_history(limit=1)
        if last:
            last_ts = parse_utc(last[0].get("as_of_utc"))
            if last_ts is not None:
                if last_ts.date() == new_ts.date():
                    logger.debug(f"Store: history already has a row for {new_ts.date()}")
                    return False
                elapsed_h = (new_ts - last_ts).total_seconds() / 3600
                if elapsed_h < min_hours:
                    logger.debug(f"Store: only {elapsed_h:.1f}h since last history row, skipping")
                    return False

        line = json.dumps(sanitize_nan_inf(dict(row)), sort_keys=True, separators=(",", ":"))
        with self.history_path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())
        logger.info(f"Store: appended history row for {new_ts.date()}")
        return True


def build_history_row(snapshot: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten a latest snapshot into a history row."""
    band = snapshot.get("band") or {}
    row: dict[str, Any] = {
        "as_of_utc": snapshot.get("as_of_utc"),
        "composite": snapshot.get("composite_score"),
        "composite_raw": snapshot.get("composite_raw"),
        "version": snapshot.get("model_version"),
        "band": band.get("key") if isinstance(band, Mapping) else band,
        "config_digest": snapshot.get("config_digest"),
    }
    for factor in snapshot.get("factors") or []:
        row[factor["key"]] = factor.get("score")
    return row


def _is_previous_day(earlier: datetime, later: datetime) -> bool:
    return (later.date() - earlier.date()).days == 1


def compute_factor_deltas(
    rows: list[dict[str, Any]],
    factor_keys: Iterable[str],
) -> dict[str, dict[str, Any]]:
    """
    Per-factor score change between the last history row and the previous
    row holding a score for that factor.

    Returns:
        factor key -> {delta, current_score, previous_score, current_date,
        previous_date, basis}
    """
    if not rows:
        return {}

    current = rows[-1]
    current_ts = parse_utc(current.get("as_of_utc")) or datetime.now(timezone.utc)
    deltas: dict[str, dict[str, Any]] = {}

    for key in factor_keys:
        cur = current.get(key)
        cur = float(cur) if is_finite(cur) else None

        prev_row = next(
            (r for r in reversed(rows[:-1]) if is_finite(r.get(key))),
            None,
        )
        entry: dict[str, Any] = {
            "delta": None,
            "current_score": cur,
            "previous_score": None,
            "current_date": current.get("as_of_utc"),
            "previous_date": None,
            "basis": BASIS_INSUFFICIENT,
        }
        if prev_row is not None:
            prev = float(prev_row[key])
            prev_ts = parse_utc(prev_row.get("as_of_utc"))
            entry["previous_score"] = prev
            entry["previous_date"] = prev_row.get("as_of_utc")
            entry["basis"] = (
                BASIS_PREVIOUS_DAY
                if prev_ts is not None and _is_previous_day(prev_ts, current_ts)
                else BASIS_PREVIOUS_ROW
            )
            if cur is not None:
                entry["delta"] = round_half_up(cur - prev, 1)
        deltas[key] = entry

    return deltas
