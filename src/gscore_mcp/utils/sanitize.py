"""Text sanitization utilities."""

import re
from typing import Any

_SECRET_PARAM = re.compile(r"((?:api_key|apikey|token|key)=)[^&\s]+", re.IGNORECASE)


def sanitize_text(text: str | None, max_length: int = 500) -> str | None:
    """
    Sanitize untrusted text fields.

    Removes control characters and truncates to max_length.
    Apply to: factor reasons, labels, source descriptions.

    Args:
        text: Text to sanitize (may be None)
        max_length: Maximum length before truncation

    Returns:
        Sanitized text or None if input was None
    """
    if text is None:
        return None

    text = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", str(text))

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text.strip()


def mask_secrets(url: str) -> str:
    """Mask credential query parameters (api_key=****) in a URL."""
    return _SECRET_PARAM.sub(r"\1****", url)


def sanitize_provenance(entries: list[Any] | None) -> list[Any]:
    """Mask secrets in provenance entries that carry a url."""
    out: list[Any] = []
    for entry in entries or []:
        if isinstance(entry, dict) and isinstance(entry.get("url"), str):
            entry = {**entry, "url": mask_secrets(entry["url"])}
        out.append(entry)
    return out
