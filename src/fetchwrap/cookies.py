"""Cookie jar protocol and a thread-safe jar backed by ``httpx.Cookies``."""

from __future__ import annotations

import threading
from typing import Any, Protocol

import httpx


class CookieJar(Protocol):
    """What clients need from a cookie store.

    Async clients also accept jars whose methods return awaitables.
    """

    def get_cookie_string(self, url: str) -> Any: ...

    def set_cookie(self, raw_cookie: str, url: str) -> Any: ...


class HttpxCookieJar:
    """Cookie jar applying standard domain/path rules via ``http.cookiejar``."""

    def __init__(self, cookies: httpx.Cookies | None = None) -> None:
        self.cookies = cookies if cookies is not None else httpx.Cookies()
        self._lock = threading.Lock()

    def get_cookie_string(self, url: str) -> str:
        request = httpx.Request("GET", url)
        with self._lock:
            self.cookies.set_cookie_header(request)
        return request.headers.get("cookie", "")

    def set_cookie(self, raw_cookie: str, url: str) -> None:
        request = httpx.Request("GET", url)
        response = httpx.Response(200, headers=[("set-cookie", raw_cookie)], request=request)
        with self._lock:
            self.cookies.extract_cookies(response)
