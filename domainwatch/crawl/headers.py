"""Response header allow-list applied before storage."""
from __future__ import annotations

from typing import Dict, Mapping

ALLOWED_HEADERS = frozenset(
    {
        "content-type",
        "server",
        "x-powered-by",
        "cache-control",
        "content-encoding",
        "content-security-policy",
        "x-frame-options",
        "x-content-type-options",
        "strict-transport-security",
    }
)


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Keep only non-sensitive headers, keyed by their lower-cased name."""
    sanitized: Dict[str, str] = {}
    for key, value in headers.items():
        name = key.lower()
        if name in ALLOWED_HEADERS and isinstance(value, str):
            sanitized[name] = value
    return sanitized
