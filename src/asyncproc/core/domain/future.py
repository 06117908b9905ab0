import asyncio
import enum
import threading
from typing import Callable, Generic, TypeVar

from asyncproc.core.helper.logging import LoggingHelper

T = TypeVar("T")


class FutureState(enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class ResultFuture(Generic[T]):
    """
    Одноразовый future: PENDING -> RESOLVED | REJECTED, ровно один раз.

    Повторный resolve/reject ничего не меняет и возвращает False.
    Наблюдателей может быть сколько угодно, исход у всех один:
    - await future из любого event loop;
    - add_done_callback(fn);
    - wait(timeout) - блокирующее ожидание из другого потока.
    """

    def __init__(self, name: str = ""):
        self._name = name
        self._lock = threading.Lock()
        self._settled = threading.Event()
        self._state = FutureState.PENDING
        self._value: T | None = None
        self._error: BaseException | None = None
        self._callbacks: list[Callable[["ResultFuture[T]"], None]] = []
        self._logger = LoggingHelper.getLogger("future")

    def __repr__(self):
        return f"<ResultFuture {self._name} state={self._state.value}>"

    @property
    def state(self) -> FutureState:
        return self._state

    def done(self) -> bool:
        return self._state is not FutureState.PENDING

    def resolve(self, value: T) -> bool:
        return self._settle(FutureState.RESOLVED, value=value)

    def reject(self, error: BaseException) -> bool:
        if not isinstance(error, BaseException):
            raise TypeError(f"reject() expects an exception, got {type(error).__name__}")
        return self._settle(FutureState.REJECTED, error=error)

    def _settle(
        self,
        state: FutureState,
        value: T | None = None,
        error: BaseException | None = None,
    ) -> bool:
        with self._lock:
            if self._state is not FutureState.PENDING:
                self._logger.warning(
                    "%s already %s, ignoring %s", self, self._state.value, state.value
                )
                return False

            self._state = state
            self._value = value
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
            self._settled.set()

        for callback in callbacks:
            self._run_callback(callback)

        return True

    def _run_callback(self, callback: Callable[["ResultFuture[T]"], None]) -> None:
        try:
            callback(self)
        except Exception:
            self._logger.exception("done callback %r failed", callback)

    def add_done_callback(self, callback: Callable[["ResultFuture[T]"], None]) -> None:
        with self._lock:
            if self._state is FutureState.PENDING:
                self._callbacks.append(callback)
                return

        self._run_callback(callback)

    def result(self) -> T:
        if self._state is FutureState.PENDING:
            raise asyncio.InvalidStateError(f"{self} is not settled yet")

        if self._state is FutureState.REJECTED:
            assert self._error is not None
            raise self._error

        return self._value  # type: ignore[return-value]

    def exception(self) -> BaseException | None:
        if self._state is FutureState.PENDING:
            raise asyncio.InvalidStateError(f"{self} is not settled yet")

        return self._error

    def wait(self, timeout: float | None = None) -> T:
        """Блокирующее ожидание. Не вызывать из потока event loop, который должен settle future"""
        if not self._settled.wait(timeout):
            raise TimeoutError(f"{self} was not settled within {timeout} seconds")

        return self.result()

    async def _wait_async(self) -> T:
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()

        def wake(_: "ResultFuture[T]") -> None:
            loop.call_soon_threadsafe(_set_waiter, waiter)

        self.add_done_callback(wake)
        await waiter

        return self.result()

    def __await__(self):
        return self._wait_async().__await__()


def _set_waiter(waiter: asyncio.Future) -> None:
    # ожидающий мог быть отменён
    if not waiter.done():
        waiter.set_result(None)
