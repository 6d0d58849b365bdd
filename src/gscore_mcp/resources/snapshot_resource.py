"""Latest snapshot resource handler."""

from gscore_mcp.data.store import SnapshotStore
from gscore_mcp.utils.canonical import pretty_dumps


class ResourceNotFoundError(Exception):
    """Resource not available on disk."""

    pass


def read_latest_resource(store: SnapshotStore) -> tuple[str, str]:
    """
    Serve the persisted latest snapshot only. Never recomputes.

    Returns:
        Tuple of (json_text, mime_type)

    Raises:
        ResourceNotFoundError: If no snapshot has been written yet
    """
    snapshot = store.read_latest()
    if snapshot is None:
        raise ResourceNotFoundError("No snapshot yet. Call refresh_gscore first: gscore://latest")
    return pretty_dumps(snapshot), "application/json"
