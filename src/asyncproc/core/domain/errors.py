class LauncherError(Exception):
    """Базовая ошибка запуска фоновой команды"""


# --- ошибки конструирования: future не создаётся, ловить на вызове launch ---


class ForkError(LauncherError):
    def __init__(self, message: str = "Could not fork process"):
        super().__init__(message)


class PortAllocationError(LauncherError):
    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ChannelBindError(LauncherError):
    def __init__(self, address: str, reason: str):
        super().__init__(f"Could not listen on {address}: {reason}")
        self.address = address
        self.reason = reason


# --- ошибки, которые приходят через future ---


class ChildExecutionError(LauncherError):
    """Сбой внутри форкнутого процесса до или во время запуска команды"""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __repr__(self):
        return f"ChildExecutionError(kind={self.kind!r}, message={self.message!r})"


class NonZeroExitError(LauncherError):
    """Команда отработала, но вернула ненулевой код"""

    def __init__(self, exit_code: int, output: str):
        super().__init__(f"Exit code {exit_code}: {output}")
        self.exit_code = exit_code
        self.output = output


class ResultUndeliverableError(LauncherError):
    """Ребёнок завершился, а пригодного результата так и не пришло"""

    def __init__(self, reason: str):
        super().__init__(f"No result received: {reason}")
        self.reason = reason


class LaunchTimeoutError(LauncherError):
    def __init__(self, timeout: float):
        super().__init__(f"Command did not finish within {timeout} seconds")
        self.timeout = timeout


class LaunchCancelledError(LauncherError):
    def __init__(self, message: str = "Launch was cancelled"):
        super().__init__(message)
