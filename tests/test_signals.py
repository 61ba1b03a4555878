from __future__ import annotations

import asyncio
import threading
import time

import pytest

from fetchwrap.exceptions import RequestAbortedError, RequestTimeoutError
from fetchwrap.signals import AbortSignal


def test_abort_sets_reason_and_notifies_listeners() -> None:
    signal = AbortSignal()
    notified: list[AbortSignal] = []
    signal.add_listener(notified.append)

    signal.abort()

    assert signal.aborted
    assert isinstance(signal.reason, RequestAbortedError)
    assert notified == [signal]
    with pytest.raises(RequestAbortedError, match="aborted"):
        signal.throw_if_aborted()


def test_timeout_signal_fires_after_deadline() -> None:
    signal = AbortSignal.timeout(20)
    assert not signal.aborted
    assert signal.remaining() is not None

    time.sleep(0.05)

    assert signal.aborted
    assert isinstance(signal.reason, RequestTimeoutError)
    assert "timed out" in str(signal.reason)


def test_any_follows_first_source_to_fire() -> None:
    user = AbortSignal()
    deadline = AbortSignal.timeout(60_000)
    combined = AbortSignal.any([user, deadline])

    assert not combined.aborted
    user.abort(RequestAbortedError("stop"))

    assert combined.aborted
    assert str(combined.reason) == "stop"


def test_any_with_already_fired_source() -> None:
    user = AbortSignal()
    user.abort()

    assert AbortSignal.any([user]).aborted


def test_sleep_returns_early_when_aborted_from_another_thread() -> None:
    signal = AbortSignal()
    threading.Timer(0.05, signal.abort).start()

    started = time.monotonic()
    fired = signal.sleep(5)

    assert fired
    assert time.monotonic() - started < 2


def test_sleep_is_bounded_by_deadline() -> None:
    signal = AbortSignal.timeout(30)

    started = time.monotonic()
    assert signal.sleep(5)
    assert time.monotonic() - started < 2


def test_async_wait_times_out_without_abort() -> None:
    signal = AbortSignal()

    assert asyncio.run(signal.wait(0.01)) is False


def test_async_wait_wakes_on_abort() -> None:
    async def scenario() -> bool:
        signal = AbortSignal()
        asyncio.get_running_loop().call_later(0.02, signal.abort)
        return await signal.wait()

    assert asyncio.run(scenario()) is True


def test_timeout_signal_notifies_listeners_at_deadline() -> None:
    signal = AbortSignal.timeout(20)
    fired = threading.Event()
    signal.add_listener(lambda _: fired.set())

    assert fired.wait(1.0)
    assert isinstance(signal.reason, RequestTimeoutError)


def test_release_detaches_composed_signal_from_sources() -> None:
    user = AbortSignal()
    deadline = AbortSignal.timeout(60_000)
    combined = AbortSignal.any([user, deadline], owned=[deadline])
    assert len(user._listeners) == 1

    combined.release()

    assert user._listeners == []
    assert deadline._timer is not None and deadline._timer.finished.is_set()
    user.abort()
    assert not combined.aborted


def test_composed_signal_detaches_once_it_fires() -> None:
    user = AbortSignal()
    deadline = AbortSignal.timeout(20)
    combined = AbortSignal.any([user, deadline], owned=[deadline])
    fired = threading.Event()
    combined.add_listener(lambda _: fired.set())

    assert fired.wait(1.0)
    assert isinstance(combined.reason, RequestTimeoutError)
    assert user._listeners == []
