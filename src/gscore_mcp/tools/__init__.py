"""G-Score tools."""

from gscore_mcp.tools.audit import audit_latest
from gscore_mcp.tools.history import get_history
from gscore_mcp.tools.latest import get_config, get_latest
from gscore_mcp.tools.refresh import refresh_gscore
from gscore_mcp.tools.runtime import Runtime, get_runtime, set_runtime
from gscore_mcp.tools.what_if import what_if_score

__all__ = [
    "Runtime",
    "audit_latest",
    "get_config",
    "get_history",
    "get_latest",
    "get_runtime",
    "refresh_gscore",
    "set_runtime",
    "what_if_score",
]
