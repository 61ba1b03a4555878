"""Synchronous and asynchronous retrying clients."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import time
from typing import Any

import httpx

from .exceptions import HTTPError, RequestAbortedError
from .request_options import (
    DEFAULT_RETRY_POLICY,
    AttemptContext,
    ClientOptions,
    RequestOptions,
    coerce_options,
    merge_models,
)
from .resolver import (
    RequestContext,
    apply_cookie_string,
    apply_hook_result,
    compose_signal,
    merge_options,
    prepare_context,
)
from .retry import backoff_delay, http_error_verdict, is_network_error, retries_left
from .security import sanitize_headers, validate_prefix_url
from .signals import AbortSignal

logger = logging.getLogger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _error_json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _parse_result(response: httpx.Response, parse_json: bool) -> Any:
    if not parse_json:
        return response
    if response.status_code in {204, 205}:
        return None
    return response.json()


def _abort_reason(signal: AbortSignal | None) -> BaseException | None:
    if signal is not None and signal.aborted:
        return signal.reason
    return None


class _BaseClient:
    prefix_url_env_var = "FETCHWRAP_PREFIX_URL"

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        prefix_url_env_var: str | None = None,
        _owns_httpx: bool = True,
    ) -> None:
        options = options or ClientOptions()
        self.prefix_url_env_var = prefix_url_env_var or self.prefix_url_env_var
        env_prefix_url = os.getenv(self.prefix_url_env_var)
        if options.prefix_url is None and env_prefix_url:
            options = options.model_copy(update={"prefix_url": env_prefix_url})
        if options.prefix_url:
            validate_prefix_url(options.prefix_url)
        self.defaults: ClientOptions = options.model_copy(
            update={"retry": merge_models(DEFAULT_RETRY_POLICY, options.retry)}
        )
        self._owns_httpx = _owns_httpx

    @staticmethod
    def _compose_signal(context: RequestContext) -> AbortSignal | None:
        """Attach the call's deadline; returns the signal the call must release."""
        user_signal = context.signal
        context.signal = compose_signal(user_signal, context.timeout)
        if context.signal is user_signal:
            return None
        return context.signal

    def _derived_defaults(self, options: RequestOptions | None, overrides: dict[str, Any]) -> ClientOptions:
        return merge_options(self.defaults, coerce_options(options, overrides, ClientOptions))

    def _build_request(self, context: RequestContext, default_timeout: httpx.Timeout) -> httpx.Request:
        timeout = default_timeout
        if context.signal is not None:
            remaining = context.signal.remaining()
            if remaining is not None:
                timeout = httpx.Timeout(remaining)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("%s %s headers=%s", context.method, context.url, sanitize_headers(dict(context.headers)))
        return httpx.Request(
            context.method,
            context.url,
            headers=context.headers,
            content=context.content,
            extensions={"timeout": timeout.as_dict()},
        )

    @staticmethod
    def _failure(response: httpx.Response, context: RequestContext) -> HTTPError:
        json_body = _error_json_body(response) if context.parse_json else None
        return HTTPError(response, json_body=json_body)

    @staticmethod
    def _attempt_context(error: BaseException, context: RequestContext, attempt_number: int) -> AttemptContext:
        return AttemptContext(
            error=error,
            attempt_number=attempt_number,
            retries_left=retries_left(context.retry, attempt_number),
        )

    @staticmethod
    def _log_retry(context: RequestContext, attempt: AttemptContext, delay_ms: float) -> None:
        logger.info(
            "Retrying %s %s in %.0fms after %s (attempt %d/%d)",
            context.method,
            context.url,
            delay_ms,
            type(attempt.error).__name__,
            attempt.attempt_number,
            context.retry.retries + 1,
        )

    @staticmethod
    def _log_cookie_failure(url: str, exc: BaseException) -> None:
        logger.warning("Failed to store cookie for %s", url, exc_info=exc)


class Client(_BaseClient):
    """Synchronous client.

    Call it with a URL (or a path when ``prefix_url`` is set) plus
    :class:`RequestOptions` or keyword options.
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        httpx_client: httpx.Client | None = None,
        prefix_url_env_var: str | None = None,
        _owns_httpx: bool = True,
    ) -> None:
        super().__init__(
            options,
            prefix_url_env_var=prefix_url_env_var,
            _owns_httpx=_owns_httpx and httpx_client is None,
        )
        self._httpx = httpx_client or httpx.Client()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_httpx:
            self._httpx.close()

    def derive(self, options: RequestOptions | None = None, **overrides: Any) -> "Client":
        """Return a client whose defaults are these merged with ``overrides``."""
        return Client(
            self._derived_defaults(options, overrides),
            httpx_client=self._httpx,
            prefix_url_env_var=self.prefix_url_env_var,
            _owns_httpx=False,
        )

    def __call__(self, target: str | httpx.URL, options: RequestOptions | None = None, **overrides: Any) -> Any:
        return self.request(target, options, **overrides)

    def request(self, target: str | httpx.URL, options: RequestOptions | None = None, **overrides: Any) -> Any:
        context = self._resolve(target, coerce_options(options, overrides, RequestOptions))
        owned_signal = self._compose_signal(context)
        try:
            if context.before_request is not None:
                context = apply_hook_result(context, context.before_request(context))
            return self._execute(context)
        finally:
            if owned_signal is not None:
                owned_signal.release()

    def _resolve(self, target: str | httpx.URL, options: RequestOptions) -> RequestContext:
        context = prepare_context(self.defaults, target, options)
        if context.cookie_jar is not None:
            apply_cookie_string(context, context.cookie_jar.get_cookie_string(str(context.url)))
        return context

    def _execute(self, context: RequestContext) -> Any:
        attempt_number = 0
        while True:
            attempt_number += 1
            if context.signal is not None:
                context.signal.throw_if_aborted()
            try:
                return self._attempt(context)
            except Exception as exc:
                reason = _abort_reason(context.signal)
                if reason is exc:
                    raise
                if reason is not None:
                    raise reason from exc

                policy = context.retry
                attempt = self._attempt_context(exc, context, attempt_number)
                if policy.on_failed_attempt is not None:
                    policy.on_failed_attempt(attempt)
                if attempt.retries_left == 0:
                    raise

                if isinstance(exc, HTTPError):
                    should_retry, retry_after = http_error_verdict(exc, policy)
                    if not should_retry:
                        raise
                    if retry_after:
                        logger.info("Waiting %dms requested by Retry-After", retry_after)
                        self._sleep(context, retry_after)
                elif not (policy.network_errors and is_network_error(exc)):
                    if policy.should_retry is None or not policy.should_retry(attempt):
                        raise

                delay = backoff_delay(policy, attempt_number)
                self._log_retry(context, attempt, delay)
                self._sleep(context, delay)

    def _sleep(self, context: RequestContext, milliseconds: float) -> None:
        if context.signal is None:
            time.sleep(milliseconds / 1000)
            return
        if context.signal.sleep(milliseconds / 1000):
            context.signal.throw_if_aborted()

    def _attempt(self, context: RequestContext) -> Any:
        request = self._build_request(context, self._httpx.timeout)
        response = self._httpx.send(request)
        # a blocking send cannot be interrupted, so honour an abort that fired meanwhile
        if context.signal is not None:
            context.signal.throw_if_aborted()

        if context.after_response is not None:
            response = context.after_response(response, context)

        if not response.is_success:
            raise self._failure(response, context)

        if context.cookie_jar is not None:
            url = str(context.url)
            for raw_cookie in response.headers.get_list("set-cookie"):
                try:
                    context.cookie_jar.set_cookie(raw_cookie, url)
                except Exception as exc:
                    self._log_cookie_failure(url, exc)

        return _parse_result(response, context.parse_json)


class AsyncClient(_BaseClient):
    """Asynchronous client.

    Hooks, predicates, observers and cookie jars may be plain callables or
    return awaitables.
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        httpx_client: httpx.AsyncClient | None = None,
        prefix_url_env_var: str | None = None,
        _owns_httpx: bool = True,
    ) -> None:
        super().__init__(
            options,
            prefix_url_env_var=prefix_url_env_var,
            _owns_httpx=_owns_httpx and httpx_client is None,
        )
        self._httpx = httpx_client or httpx.AsyncClient()

    async def __aenter__(self) -> "AsyncClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_httpx:
            await self._httpx.aclose()

    def derive(self, options: RequestOptions | None = None, **overrides: Any) -> "AsyncClient":
        """Return a client whose defaults are these merged with ``overrides``."""
        return AsyncClient(
            self._derived_defaults(options, overrides),
            httpx_client=self._httpx,
            prefix_url_env_var=self.prefix_url_env_var,
            _owns_httpx=False,
        )

    async def __call__(self, target: str | httpx.URL, options: RequestOptions | None = None, **overrides: Any) -> Any:
        return await self.request(target, options, **overrides)

    async def request(self, target: str | httpx.URL, options: RequestOptions | None = None, **overrides: Any) -> Any:
        context = await self._resolve(target, coerce_options(options, overrides, RequestOptions))
        owned_signal = self._compose_signal(context)
        try:
            if context.before_request is not None:
                context = apply_hook_result(context, await _maybe_await(context.before_request(context)))
            return await self._execute(context)
        finally:
            if owned_signal is not None:
                owned_signal.release()

    async def _resolve(self, target: str | httpx.URL, options: RequestOptions) -> RequestContext:
        context = prepare_context(self.defaults, target, options)
        if context.cookie_jar is not None:
            cookie_string = await _maybe_await(context.cookie_jar.get_cookie_string(str(context.url)))
            apply_cookie_string(context, cookie_string)
        return context

    async def _execute(self, context: RequestContext) -> Any:
        attempt_number = 0
        while True:
            attempt_number += 1
            if context.signal is not None:
                context.signal.throw_if_aborted()
            try:
                return await self._attempt(context)
            except Exception as exc:
                reason = _abort_reason(context.signal)
                if reason is exc:
                    raise
                if reason is not None:
                    raise reason from exc

                policy = context.retry
                attempt = self._attempt_context(exc, context, attempt_number)
                if policy.on_failed_attempt is not None:
                    await _maybe_await(policy.on_failed_attempt(attempt))
                if attempt.retries_left == 0:
                    raise

                if isinstance(exc, HTTPError):
                    should_retry, retry_after = http_error_verdict(exc, policy)
                    if not should_retry:
                        raise
                    if retry_after:
                        logger.info("Waiting %dms requested by Retry-After", retry_after)
                        await self._sleep(context, retry_after)
                elif not (policy.network_errors and is_network_error(exc)):
                    if policy.should_retry is None or not await _maybe_await(policy.should_retry(attempt)):
                        raise

                delay = backoff_delay(policy, attempt_number)
                self._log_retry(context, attempt, delay)
                await self._sleep(context, delay)

    async def _sleep(self, context: RequestContext, milliseconds: float) -> None:
        if context.signal is None:
            await asyncio.sleep(milliseconds / 1000)
            return
        if await context.signal.wait(milliseconds / 1000):
            context.signal.throw_if_aborted()

    async def _send(self, request: httpx.Request, signal: AbortSignal | None) -> httpx.Response:
        if signal is None:
            return await self._httpx.send(request)

        async def until_aborted() -> None:
            while not await signal.wait():
                continue

        send = asyncio.ensure_future(self._httpx.send(request))
        abort = asyncio.ensure_future(until_aborted())
        try:
            await asyncio.wait({send, abort}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            send.cancel()
            raise
        finally:
            abort.cancel()
        if send.done():
            return send.result()

        # the signal fired first; abandon the in-flight send
        send.cancel()
        try:
            await send
        except asyncio.CancelledError:
            pass
        signal.throw_if_aborted()
        raise RequestAbortedError("This operation was aborted")

    async def _attempt(self, context: RequestContext) -> Any:
        request = self._build_request(context, self._httpx.timeout)
        response = await self._send(request, context.signal)

        if context.after_response is not None:
            response = await _maybe_await(context.after_response(response, context))

        if not response.is_success:
            raise self._failure(response, context)

        if context.cookie_jar is not None:
            await self._store_cookies(context, response)

        return _parse_result(response, context.parse_json)

    @classmethod
    async def _store_cookies(cls, context: RequestContext, response: httpx.Response) -> None:
        url = str(context.url)
        results = await asyncio.gather(
            *(_maybe_await(context.cookie_jar.set_cookie(raw, url)) for raw in response.headers.get_list("set-cookie")),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                cls._log_cookie_failure(url, result)


def create(
    options: ClientOptions | None = None,
    *,
    httpx_client: httpx.Client | None = None,
    prefix_url_env_var: str | None = None,
    **overrides: Any,
) -> Client:
    """Create a synchronous client bound to the given defaults.

    ``prefix_url`` falls back to the environment variable named by
    ``prefix_url_env_var`` (``FETCHWRAP_PREFIX_URL`` by default).
    """
    return Client(
        coerce_options(options, overrides, ClientOptions),
        httpx_client=httpx_client,
        prefix_url_env_var=prefix_url_env_var,
    )


def create_async(
    options: ClientOptions | None = None,
    *,
    httpx_client: httpx.AsyncClient | None = None,
    prefix_url_env_var: str | None = None,
    **overrides: Any,
) -> AsyncClient:
    """Create an asynchronous client bound to the given defaults.

    ``prefix_url`` falls back to the environment variable named by
    ``prefix_url_env_var`` (``FETCHWRAP_PREFIX_URL`` by default).
    """
    return AsyncClient(
        coerce_options(options, overrides, ClientOptions),
        httpx_client=httpx_client,
        prefix_url_env_var=prefix_url_env_var,
    )
