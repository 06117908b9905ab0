from abc import ABC, abstractmethod
from typing import Any

from asyncproc.core.domain.future import ResultFuture
from asyncproc.core.domain.request import ChildHandle, LaunchRequest


class LaunchedProcess(ABC):
    """Запущенная фоновая команда: pid и future с её результатом"""

    @property
    @abstractmethod
    def request(self) -> LaunchRequest:
        pass

    @property
    @abstractmethod
    def handle(self) -> ChildHandle:
        pass

    @property
    def pid(self) -> int:
        return self.handle.pid

    @property
    @abstractmethod
    def future(self) -> ResultFuture[str]:
        pass

    @abstractmethod
    def cancel(self) -> bool:
        """Прервать запуск. False, если результат уже известен"""
        pass

    def __await__(self) -> Any:
        return self.future.__await__()


class BaseLauncher(ABC):
    """Базовый класс для запуска команд в отдельном процессе"""

    @abstractmethod
    async def launch(
        self, command: str | LaunchRequest, timeout: float | None = None
    ) -> LaunchedProcess:
        """
        Запустить команду в отдельном процессе и сразу вернуть управление.

        Исключение прямо из launch означает, что процесс не был создан.
        Всё остальное (ошибки ребёнка, ненулевой код, таймаут) приходит через future.
        """
        pass
