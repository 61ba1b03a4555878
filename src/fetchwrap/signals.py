"""Composable cancellation signals shared by sync and async clients."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, Iterable

from .exceptions import RequestAbortedError, RequestTimeoutError


Listener = Callable[["AbortSignal"], None]


class AbortSignal:
    """A one-shot cancellation flag.

    A signal fires either when :meth:`abort` is called, when its deadline
    passes (see :meth:`timeout`), or when any signal it was composed from
    fires (see :meth:`any`). Listeners run when the signal fires, from the
    thread that fired it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fired = False
        self._reason: BaseException | None = None
        self._listeners: list[Listener] = []
        self._deadline: float | None = None
        self._timeout_ms: float | None = None
        self._timer: threading.Timer | None = None
        self._sources: tuple[AbortSignal, ...] = ()
        self._owned: tuple[AbortSignal, ...] = ()

    @classmethod
    def timeout(cls, milliseconds: float) -> "AbortSignal":
        signal = cls()
        signal._timeout_ms = milliseconds
        signal._deadline = time.monotonic() + milliseconds / 1000
        signal._timer = threading.Timer(milliseconds / 1000, signal._expire)
        signal._timer.daemon = True
        signal._timer.start()
        return signal

    @classmethod
    def any(cls, signals: Iterable["AbortSignal"], *, owned: Iterable["AbortSignal"] = ()) -> "AbortSignal":
        """Compose signals into one that fires as soon as any of them does.

        Signals listed in ``owned`` are released together with the result.
        """
        combined = cls()
        combined._sources = tuple(signals)
        combined._owned = tuple(owned)
        for source in combined._sources:
            source.add_listener(combined._follow)
        return combined

    @property
    def aborted(self) -> bool:
        if self._fired:
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._expire()
            return True
        for source in self._sources:
            if source.aborted:
                self._follow(source)
                return True
        return False

    @property
    def reason(self) -> BaseException | None:
        if self.aborted:
            return self._reason
        return None

    def abort(self, reason: BaseException | None = None) -> None:
        self._fire(reason or RequestAbortedError("This operation was aborted"))

    def remaining(self) -> float | None:
        """Seconds until the nearest deadline, or ``None`` without one."""
        candidates = []
        if self._deadline is not None:
            candidates.append(max(0.0, self._deadline - time.monotonic()))
        for source in self._sources:
            left = source.remaining()
            if left is not None:
                candidates.append(left)
        return min(candidates) if candidates else None

    def throw_if_aborted(self) -> None:
        reason = self.reason
        if reason is not None:
            raise reason

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            if not self._fired:
                self._listeners.append(listener)
                return
        listener(self)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def release(self) -> None:
        """Stop the deadline timer and detach from the composed sources.

        The signal keeps its current state; it just stops following others.
        """
        if self._timer is not None:
            self._timer.cancel()
        sources, self._sources = self._sources, ()
        for source in sources:
            source.remove_listener(self._follow)
        for signal in self._owned:
            signal.release()

    def _expire(self) -> None:
        self._fire(RequestTimeoutError(f"Request timed out after {self._timeout_ms:g}ms", timeout=self._timeout_ms))

    def _follow(self, source: "AbortSignal") -> None:
        self._fire(source._reason)

    def _fire(self, reason: BaseException | None) -> None:
        with self._lock:
            if self._fired:
                return
            self._fired = True
            self._reason = reason
            listeners, self._listeners = self._listeners, []
        self.release()
        for listener in listeners:
            listener(self)

    def _bounded(self, seconds: float | None) -> float | None:
        left = self.remaining()
        if seconds is None:
            return left
        if left is None:
            return seconds
        return min(seconds, left)

    def sleep(self, seconds: float | None) -> bool:
        """Block up to ``seconds`` or until the signal fires.

        Returns ``True`` when the signal has fired.
        """
        event = threading.Event()

        def wake(_: AbortSignal) -> None:
            event.set()

        self.add_listener(wake)
        try:
            event.wait(self._bounded(seconds))
        finally:
            self.remove_listener(wake)
        return self.aborted

    async def wait(self, seconds: float | None = None) -> bool:
        """Async variant of :meth:`sleep`; ``None`` waits until the signal fires."""
        loop = asyncio.get_running_loop()
        event = asyncio.Event()

        def wake(_: AbortSignal) -> None:
            loop.call_soon_threadsafe(event.set)

        self.add_listener(wake)
        try:
            await asyncio.wait_for(event.wait(), self._bounded(seconds))
        except asyncio.TimeoutError:
            pass
        finally:
            self.remove_listener(wake)
        return self.aborted
