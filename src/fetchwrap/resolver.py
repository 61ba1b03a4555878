"""Turn client defaults plus per-call options into a concrete request context.

The steps run in a fixed order; each one sees the output of the previous:

1. merge defaults and per-call options (:func:`merge_options`)
2. resolve the target against ``prefix_url`` (:func:`resolve_url`)
3. replace the query string with ``search_params``
4. serialize ``json_body``
5. attach cookies from the jar
6. compose the timeout with the caller's signal
7. run ``before_request``

Steps 5 and 7 may block or suspend, so clients run them around
:func:`prepare_context`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from typing import Any, Callable, Mapping, Optional, Union, cast

import httpx

from .exceptions import InvalidUsageError
from .headers import merge_headers
from .request_options import ClientOptions, RequestOptions, RetryPolicy, merge_models
from .signals import AbortSignal


@dataclass
class RequestContext:
    """Mutable per-call state shared by every attempt of one call.

    Hooks receive this object and may change it in place; each attempt
    builds its request from the current values.
    """

    url: httpx.URL
    method: str
    headers: httpx.Headers
    content: Any
    retry: RetryPolicy
    parse_json: bool = False
    signal: Optional[AbortSignal] = None
    timeout: Optional[float] = None
    cookie_jar: Any = None
    before_request: Optional[Callable[..., Any]] = None
    after_response: Optional[Callable[..., Any]] = None

    def update(self, changes: Mapping[str, Any]) -> None:
        """Apply a partial replacement, coercing ``url``, ``headers`` and ``retry``."""
        known = {f.name for f in fields(self)}
        for name, value in changes.items():
            if name not in known:
                raise InvalidUsageError(f"Unknown request context field: {name}")
            if name == "url":
                value = httpx.URL(str(value))
            elif name == "headers":
                value = merge_headers(None, value)
            elif name == "retry":
                policy = value if isinstance(value, RetryPolicy) else RetryPolicy.model_validate(value)
                value = merge_models(self.retry, policy)
            setattr(self, name, value)


HookResult = Union[None, RequestContext, Mapping[str, Any]]


def merge_options(defaults: ClientOptions, options: RequestOptions | None) -> ClientOptions:
    """Field-level merge used for every call and for deriving clients."""
    if options is None:
        return defaults
    merged = cast(ClientOptions, merge_models(defaults, options))
    if defaults.retry is not None and options.retry is not None:
        retry = merge_models(defaults.retry, options.retry)
    else:
        retry = options.retry or defaults.retry
    return merged.model_copy(
        update={
            "headers": merge_headers(defaults.headers, options.headers),
            "retry": retry,
        }
    )


def resolve_url(target: str | httpx.URL, prefix_url: str | None) -> httpx.URL:
    target = str(target)
    if prefix_url:
        relative = target[1:] if target.startswith("/") else target
        if relative == "":
            return httpx.URL(prefix_url)
        base = prefix_url if prefix_url.endswith("/") else f"{prefix_url}/"
        return httpx.URL(base).join(relative)

    url = httpx.URL(target)
    if not url.is_absolute_url:
        raise InvalidUsageError(f"Relative URL {target!r} requires a prefix_url")
    return url


def apply_search_params(url: httpx.URL, search_params: Any) -> httpx.URL:
    if search_params is None:
        return url
    return url.copy_with(params=httpx.QueryParams(search_params))


def serialize_json_body(options: ClientOptions) -> tuple[Any, httpx.Headers]:
    headers = merge_headers(None, options.headers)
    if "json_body" not in options.model_fields_set:
        return options.body, headers
    if "body" in options.model_fields_set:
        raise InvalidUsageError("`json_body` cannot be used together with `body`.")
    if "content-type" not in headers:
        headers["content-type"] = "application/json"
    return json.dumps(options.json_body), headers


def compose_signal(signal: AbortSignal | None, timeout: float | None) -> AbortSignal | None:
    if not timeout:
        return signal
    timeout_signal = AbortSignal.timeout(timeout)
    if signal is None:
        return timeout_signal
    return AbortSignal.any([signal, timeout_signal], owned=[timeout_signal])


def prepare_context(defaults: ClientOptions, target: str | httpx.URL, options: RequestOptions | None) -> RequestContext:
    """Run the pure resolution steps (1 to 4) and build the context."""
    merged = merge_options(defaults, options)
    url = resolve_url(target, merged.prefix_url)
    url = apply_search_params(url, merged.search_params)
    content, headers = serialize_json_body(merged)
    return RequestContext(
        url=url,
        method=merged.method.upper(),
        headers=headers,
        content=content,
        retry=merged.retry or RetryPolicy(),
        parse_json=merged.parse_json,
        signal=merged.signal,
        timeout=merged.timeout,
        cookie_jar=merged.cookie_jar,
        before_request=merged.before_request,
        after_response=merged.after_response,
    )


def apply_cookie_string(context: RequestContext, cookie_string: Any) -> None:
    if isinstance(cookie_string, str) and cookie_string:
        context.headers = merge_headers(context.headers, {"cookie": cookie_string})


def apply_hook_result(context: RequestContext, result: HookResult) -> RequestContext:
    if result is None:
        return context
    if isinstance(result, RequestContext):
        return result
    if isinstance(result, Mapping):
        context.update(result)
        return context
    raise InvalidUsageError(f"before_request must return None, a mapping or a RequestContext, not {type(result).__name__}")
