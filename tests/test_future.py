import asyncio
import threading

import pytest

from asyncproc.core.domain.future import FutureState, ResultFuture


# --- Переходы состояний -----------------------------------------------------------


def test_resolve_once():
    future = ResultFuture()

    assert future.state is FutureState.PENDING
    assert future.resolve("first")
    assert not future.resolve("second")
    assert not future.reject(RuntimeError("late"))

    assert future.state is FutureState.RESOLVED
    assert future.result() == "first"
    assert future.exception() is None


def test_reject_once():
    error = RuntimeError("boom")
    future = ResultFuture()

    assert future.reject(error)
    assert not future.resolve("late")

    assert future.state is FutureState.REJECTED
    assert future.exception() is error
    with pytest.raises(RuntimeError, match="boom"):
        future.result()


def test_result_is_idempotent():
    future = ResultFuture()
    future.resolve("value")

    assert [future.result() for _ in range(3)] == ["value"] * 3


def test_pending_result_raises():
    future = ResultFuture()

    with pytest.raises(asyncio.InvalidStateError):
        future.result()

    with pytest.raises(asyncio.InvalidStateError):
        future.exception()


def test_reject_requires_exception():
    with pytest.raises(TypeError):
        ResultFuture().reject("not an exception")


# --- Наблюдатели ------------------------------------------------------------------


def test_done_callbacks_called_exactly_once():
    future = ResultFuture()
    calls = []

    future.add_done_callback(calls.append)
    future.resolve("x")
    future.resolve("y")
    # после завершения колбэк вызывается сразу
    future.add_done_callback(calls.append)

    assert calls == [future, future]


def test_failing_callback_does_not_break_others():
    future = ResultFuture()
    calls = []

    def broken(_):
        raise ValueError("callback failure")

    future.add_done_callback(broken)
    future.add_done_callback(calls.append)

    assert future.resolve("x")
    assert calls == [future]


def test_wait_from_another_thread():
    future = ResultFuture()

    timer = threading.Timer(0.05, future.resolve, args=("late value",))
    timer.start()
    try:
        assert future.wait(timeout=5) == "late value"
    finally:
        timer.cancel()


def test_wait_timeout():
    with pytest.raises(TimeoutError):
        ResultFuture().wait(timeout=0.01)


@pytest.mark.asyncio
async def test_await_from_many_observers():
    future = ResultFuture()

    waiters = [asyncio.ensure_future(future) for _ in range(3)]
    await asyncio.sleep(0)
    asyncio.get_running_loop().call_soon(future.resolve, "shared")

    assert await asyncio.gather(*waiters) == ["shared"] * 3


@pytest.mark.asyncio
async def test_await_rejected():
    future = ResultFuture()
    future.reject(LookupError("missing"))

    with pytest.raises(LookupError):
        await future


@pytest.mark.asyncio
async def test_await_settled_from_thread():
    future = ResultFuture()

    threading.Timer(0.05, future.resolve, args=("from thread",)).start()

    assert await asyncio.wait_for(future, timeout=5) == "from thread"
