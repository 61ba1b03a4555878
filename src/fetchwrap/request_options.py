"""Client defaults and per-call overrides for fetchwrap clients."""

from __future__ import annotations

from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .signals import AbortSignal


DEFAULT_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504, 521, 522, 524})

ModelT = TypeVar("ModelT", bound=BaseModel)


class FetchWrapModel(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, populate_by_name=True, extra="forbid")


class RetryPolicy(FetchWrapModel):
    """Retry behaviour for one call.

    Delays are in milliseconds. The backoff before attempt ``n + 1`` is
    ``min_timeout * factor ** (n - 1)``, capped at ``max_timeout``.
    ``max_retry_after`` rejects retries whose ``Retry-After`` asks for a
    longer wait. ``should_retry`` is only consulted for failures that are
    neither HTTP errors nor (with ``network_errors``) network failures.
    """

    retries: int = Field(2, ge=0)
    min_timeout: float = Field(50, ge=0)
    factor: float = Field(2, ge=1)
    max_timeout: Optional[float] = Field(None, ge=0)
    max_retry_after: Optional[float] = Field(None, ge=0)
    status_codes: frozenset[int] = DEFAULT_STATUS_CODES
    network_errors: bool = True
    should_retry: Optional[Callable[..., Any]] = None
    on_failed_attempt: Optional[Callable[..., Any]] = None


DEFAULT_RETRY_POLICY = RetryPolicy()


class AttemptContext(FetchWrapModel):
    error: BaseException
    attempt_number: int
    retries_left: int


class RequestOptions(FetchWrapModel):
    method: str = "GET"
    headers: Any = None
    body: Any = None
    json_body: Any = None
    search_params: Any = None
    parse_json: bool = Field(False, alias="json")
    timeout: Optional[float] = Field(None, gt=0)
    signal: Optional[AbortSignal] = None
    cookie_jar: Any = None
    before_request: Optional[Callable[..., Any]] = None
    after_response: Optional[Callable[..., Any]] = None
    retry: Optional[RetryPolicy] = None


class ClientOptions(RequestOptions):
    prefix_url: Optional[str] = None


def merge_models(base: ModelT | None, overlay: ModelT | BaseModel | None) -> ModelT | None:
    """Return ``base`` with every field explicitly set on ``overlay`` replaced.

    Fields are copied one level deep only; nested values are taken whole.
    """
    if overlay is None:
        return base
    if base is None:
        return overlay  # type: ignore[return-value]
    update = {name: getattr(overlay, name) for name in overlay.model_fields_set}
    return base.model_copy(update=update)


def coerce_options(options: RequestOptions | None, overrides: dict[str, Any], model: type[ModelT]) -> ModelT:
    """Build ``model`` options from an optional instance plus keyword overrides."""
    if options is None:
        return model(**overrides)
    if not overrides:
        if isinstance(options, model):
            return options
        return model(**{name: getattr(options, name) for name in options.model_fields_set})
    fields = {name: getattr(options, name) for name in options.model_fields_set}
    fields.update(overrides)
    return model(**fields)
