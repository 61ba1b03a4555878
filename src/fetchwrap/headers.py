"""Header merging and Retry-After evaluation."""

from __future__ import annotations

import datetime as _dt
import math
from email.utils import parsedate_to_datetime
from typing import Any, Iterator, Mapping, Sequence, Union

import httpx


HeadersInput = Union[httpx.Headers, Mapping[str, Any], Sequence[Sequence[Any]], None]


def _join(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def _iter_header_items(source: HeadersInput) -> Iterator[tuple[str, str]]:
    if source is None:
        return
    if isinstance(source, httpx.Headers):
        # items() already folds repeated keys into one comma-joined value
        yield from source.items()
        return
    if isinstance(source, Mapping):
        for key, value in source.items():
            yield str(key), _join(value)
        return
    for pair in source:
        key, value = pair
        yield str(key), _join(value)


def merge_headers(base: HeadersInput = None, overlay: HeadersInput = None) -> httpx.Headers:
    """Return new headers holding ``base`` with every ``overlay`` key replaced.

    Lookups on the result are case-insensitive. Neither input is modified.
    """
    merged = httpx.Headers(list(_iter_header_items(base)))
    for key, value in _iter_header_items(overlay):
        merged[key] = value
    return merged


def retry_after_millis(response: httpx.Response) -> int | None:
    """Return the wait requested by a ``Retry-After`` header in milliseconds.

    Delta-seconds are floored to whole milliseconds. HTTP dates in the past
    clamp to 1 so a present header always means a positive wait.
    """
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    raw = raw.strip()

    try:
        seconds = float(raw)
    except ValueError:
        seconds = None
    if seconds is not None:
        if not math.isfinite(seconds) or seconds < 0:
            return None
        return math.floor(seconds * 1000)

    try:
        target = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None
    if target is None:
        return None
    if target.utcoffset() is None:
        target = target.replace(tzinfo=_dt.timezone.utc)

    now = _dt.datetime.now(_dt.timezone.utc)
    millis = math.floor((target - now).total_seconds() * 1000)
    if millis <= 0:
        return 1
    return millis
