"""URL validation and header redaction helpers."""

from __future__ import annotations

from typing import Mapping
from urllib.parse import urlparse

from .exceptions import InvalidUsageError


SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "proxy-authorization",
    "set-cookie",
    "x-api-key",
}


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return headers with sensitive values redacted for logging."""
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


def validate_prefix_url(url: str) -> None:
    """Reject prefixes that cannot serve as a base for relative targets."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise InvalidUsageError("prefix_url must include scheme and host")
    if parsed.scheme not in {"http", "https"}:
        raise InvalidUsageError(f"Unsupported prefix_url scheme: {parsed.scheme}")
    if "\x00" in url:
        raise InvalidUsageError("Invalid prefix_url")
