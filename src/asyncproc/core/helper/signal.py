import signal
import threading
from typing import Any

from asyncproc.core.helper.logging import LoggingHelper


class SigchldPolicy:
    """
    Подмена обработчика SIGCHLD на время жизни запусков.

    Пока активен хотя бы один запуск, SIGCHLD = SIG_IGN: ядро само убирает
    завершившихся детей и зомби не копятся. Исходный обработчик сохраняется
    при первом acquire и возвращается при последнем release, поэтому
    параллельные запуски не затирают друг другу "предыдущее" состояние.

    signal.signal работает только в главном потоке, ValueError пробрасывается как есть.
    """

    def __init__(self, signum: int = signal.SIGCHLD):
        self._signum = signum
        self._lock = threading.Lock()
        self._depth = 0
        self._ambient: Any = None
        self._logger = LoggingHelper.getLogger("signal")

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def active(self) -> bool:
        return self._depth > 0

    @property
    def ambient(self) -> Any:
        """Обработчик, который стоял до первого acquire (или текущий, если подмены нет)"""
        with self._lock:
            if self._depth:
                return self._ambient
            return self._current()

    def _current(self) -> Any:
        handler = signal.getsignal(self._signum)
        # None - обработчик поставлен не из python, вернуть его мы не сможем
        return signal.SIG_DFL if handler is None else handler

    def acquire(self) -> Any:
        with self._lock:
            if self._depth == 0:
                self._ambient = self._current()
                signal.signal(self._signum, signal.SIG_IGN)
                self._logger.debug("sigchld ignored, ambient handler saved")

            self._depth += 1
            return self._ambient

    def release(self) -> None:
        with self._lock:
            if self._depth == 0:
                raise RuntimeError("SigchldPolicy.release() called without acquire()")

            self._depth -= 1
            if self._depth == 0:
                signal.signal(self._signum, self._ambient)
                self._ambient = None
                self._logger.debug("sigchld ambient handler restored")

    def restore_in_child(self) -> None:
        """
        Вызывается в форкнутом процессе.

        Ребёнок унаследовал SIG_IGN, а с ним waitpid не увидит код выхода shell.
        Счётчик обнуляем: запуски родителя к ребёнку не относятся.
        """
        ambient = self._ambient if self._depth else self._current()
        signal.signal(self._signum, ambient)

        self._depth = 0
        self._ambient = None
        # lock мог быть захвачен другим потоком родителя в момент fork
        self._lock = threading.Lock()


SIGCHLD_POLICY = SigchldPolicy()
