"""Bitcoin G-Score MCP Server."""

import os


def get_server_version() -> str:
    """Get version with fallback for dev mode."""
    if version := os.environ.get("SERVER_VERSION"):
        return version
    try:
        from importlib.metadata import version as pkg_version

        return pkg_version("gscore-mcp")
    except Exception:
        return "dev"


SERVER_VERSION = get_server_version()
# Bump when snapshot schema changes materially (new fields, renamed fields, structure changes)
# v1: Initial latest/history schema
# v2: Added config_digest, transform block, health
SCHEMA_VERSION = "2"
