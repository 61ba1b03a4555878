"""Retry decisions shared by the sync and async clients."""

from __future__ import annotations

import logging

import httpx

from .exceptions import HTTPError
from .headers import retry_after_millis
from .request_options import RetryPolicy

logger = logging.getLogger(__name__)


NETWORK_ERRORS = (
    httpx.NetworkError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
    httpx.ProxyError,
)


def is_network_error(error: BaseException) -> bool:
    """True for failures to complete an exchange with the server at all."""
    return isinstance(error, NETWORK_ERRORS)


def backoff_delay(policy: RetryPolicy, attempt_number: int) -> float:
    """Milliseconds to wait after failed attempt ``attempt_number``."""
    delay = policy.min_timeout * policy.factor ** max(0, attempt_number - 1)
    if policy.max_timeout is not None:
        delay = min(delay, policy.max_timeout)
    return delay


def http_error_verdict(error: HTTPError, policy: RetryPolicy) -> tuple[bool, int | None]:
    """Decide on an HTTP failure.

    Returns whether to retry and the extra wait (ms) the server asked for.
    """
    retryable = error.is_retryable or error.status_code in policy.status_codes
    if not retryable:
        return False, None

    retry_after = retry_after_millis(error.response)
    if not retry_after:
        return True, None
    if policy.max_retry_after and retry_after > policy.max_retry_after:
        logger.warning(
            "Not retrying HTTP %s: Retry-After of %dms exceeds max_retry_after of %gms",
            error.status_code,
            retry_after,
            policy.max_retry_after,
        )
        return False, None
    return True, retry_after


def retries_left(policy: RetryPolicy, attempt_number: int) -> int:
    return max(0, policy.retries - (attempt_number - 1))
