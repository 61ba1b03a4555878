"""HTTP requests with retries, hooks, cookies and deadlines on top of httpx."""

from __future__ import annotations

import logging

from .client import AsyncClient, Client, create, create_async
from .cookies import CookieJar, HttpxCookieJar
from .exceptions import (
    FetchWrapError,
    HTTPError,
    InvalidUsageError,
    RequestAbortedError,
    RequestTimeoutError,
)
from .headers import merge_headers, retry_after_millis
from .request_options import (
    DEFAULT_RETRY_POLICY,
    AttemptContext,
    ClientOptions,
    RequestOptions,
    RetryPolicy,
)
from .resolver import RequestContext
from .signals import AbortSignal

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AbortSignal",
    "AsyncClient",
    "AttemptContext",
    "Client",
    "ClientOptions",
    "CookieJar",
    "DEFAULT_RETRY_POLICY",
    "FetchWrapError",
    "HTTPError",
    "HttpxCookieJar",
    "InvalidUsageError",
    "RequestAbortedError",
    "RequestContext",
    "RequestOptions",
    "RequestTimeoutError",
    "RetryPolicy",
    "create",
    "create_async",
    "merge_headers",
    "retry_after_millis",
]
