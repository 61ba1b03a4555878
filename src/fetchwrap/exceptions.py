"""Exceptions raised by fetchwrap clients."""

from __future__ import annotations

from typing import Any

import httpx


class FetchWrapError(Exception):
    """Base exception for all fetchwrap failures."""


class InvalidUsageError(FetchWrapError):
    """Raised when a call is misconfigured, before anything is sent."""


class HTTPError(FetchWrapError):
    """Raised for responses outside the 2xx range.

    Hooks may raise it themselves with ``is_retryable=True`` to ask for
    another attempt regardless of the configured status codes.
    """

    def __init__(
        self,
        response: httpx.Response,
        message: str | None = None,
        *,
        is_retryable: bool = False,
        json_body: Any = None,
    ) -> None:
        super().__init__(message or f"HTTP error! status: {response.status_code}")
        self.response = response
        self.status_code = response.status_code
        self.is_retryable = is_retryable
        self.json_body = json_body

    def __repr__(self) -> str:
        return f"HTTPError(status_code={self.status_code}, is_retryable={self.is_retryable})"


class RequestAbortedError(FetchWrapError):
    """Raised when the caller's signal aborts a call."""


class RequestTimeoutError(RequestAbortedError):
    """Raised when a call runs past its timeout."""

    def __init__(self, message: str, *, timeout: float | None = None) -> None:
        super().__init__(message)
        self.timeout = timeout
