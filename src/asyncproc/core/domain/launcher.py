import asyncio
import socket
from typing import Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from asyncproc.core.domain.channel import ResultChannel, ResultReporter
from asyncproc.core.domain.child import run_child
from asyncproc.core.domain.errors import (
    ChannelBindError,
    ChildExecutionError,
    ForkError,
    LaunchCancelledError,
    LaunchTimeoutError,
    LauncherError,
    NonZeroExitError,
    ResultUndeliverableError,
)
from asyncproc.core.domain.future import ResultFuture
from asyncproc.core.domain.payload import ResultPayload
from asyncproc.core.domain.request import ChildHandle, LaunchRequest
from asyncproc.core.helper.asyncio import AsyncioHelper
from asyncproc.core.helper.logging import LoggingHelper
from asyncproc.core.helper.os import OsHelper
from asyncproc.core.helper.signal import SIGCHLD_POLICY, SigchldPolicy
from asyncproc.core.helper.socket import SocketHelper
from asyncproc.core.ports.launcher import BaseLauncher, LaunchedProcess


class LauncherConfig(BaseSettings):
    """Настройки запуска фоновых команд"""

    model_config = SettingsConfigDict(env_prefix="ASYNCPROC_", extra="ignore")

    host: str = Field(default="127.0.0.1", description="loopback address for the result channel")
    port_range_start: int = Field(default=1024, ge=1, le=65535, description="first port to probe")
    port_range_end: int = Field(default=65535, ge=1, le=65535, description="last port to probe")
    max_port_attempts: int | None = Field(default=None, gt=0, description="port probes limit, unbounded if empty")
    probe_timeout: float = Field(default=1.0, gt=0, description="port probe connect timeout")
    shell: str = Field(default="/bin/sh", min_length=1, description="shell executing the command")
    timeout: float | None = Field(default=None, gt=0, description="default deadline for a launch")
    report_timeout: float = Field(default=5.0, gt=0, description="child side timeout for sending the result")
    liveness_interval: float = Field(default=0.5, gt=0, description="how often the child pid is checked")
    log_level: str = Field(default="info", description="log level")

    @model_validator(mode="after")
    def validate_port_range(self):
        if self.port_range_start > self.port_range_end:
            raise ValueError("port_range_start must not be greater than port_range_end")
        return self


class AsyncProcess(LaunchedProcess):
    """
    Один запуск: форкнутый процесс, канал для его результата и future.

    Создаётся ForkLauncher'ом уже после fork. Завершение (_finish) выполняется
    один раз при любом исходе: результат пришёл, таймаут, отмена, смерть ребёнка.
    """

    # сколько проверок подряд ребёнок должен быть мёртв без соединения,
    # чтобы считать результат потерянным
    LIVENESS_MISSES = 2

    def __init__(
        self,
        request: LaunchRequest,
        handle: ChildHandle,
        channel: ResultChannel,
        policy: SigchldPolicy,
        liveness_interval: float = 0.5,
    ):
        self._request = request
        self._handle = handle
        self._channel = channel
        self._policy = policy
        self._liveness_interval = liveness_interval
        self._future: ResultFuture[str] = ResultFuture(name=f"pid={handle.pid}")
        self._finished = False
        self._misses = 0
        self._timers: list[asyncio.TimerHandle] = []
        self._logger = LoggingHelper.getLogger("launcher")

    def __repr__(self):
        return (
            f"<AsyncProcess pid={self.pid} address={self.address} "
            f"state={self._future.state.value}>"
        )

    @property
    def request(self) -> LaunchRequest:
        return self._request

    @property
    def handle(self) -> ChildHandle:
        return self._handle

    @property
    def address(self) -> str:
        return self._channel.address

    @property
    def future(self) -> ResultFuture[str]:
        return self._future

    async def _start(self) -> None:
        loop = asyncio.get_running_loop()

        await self._channel.start(self._on_message)

        self._timers.append(loop.call_later(self._liveness_interval, self._check_liveness))
        if self._request.timeout is not None:
            self._timers.append(loop.call_later(self._request.timeout, self._on_timeout))

    def _on_message(self, body: bytes) -> None:
        try:
            payload = ResultPayload.decode(body)
        except ValidationError as e:
            self._logger.warning("pid %s sent unreadable result: %s", self.pid, e)
            self._finish(error=ResultUndeliverableError(f"malformed payload from pid {self.pid}"))
            return

        if not payload.success:
            assert payload.error is not None
            self._finish(error=ChildExecutionError(payload.error.type, payload.error.message))
        elif payload.exit_code == 0:
            self._finish(value=payload.output)
        else:
            assert payload.exit_code is not None
            self._finish(error=NonZeroExitError(payload.exit_code, payload.output))

    def _check_liveness(self) -> None:
        if self._finished:
            return

        # пустые соединения (чужие пробы портов) не в счёт: важно только,
        # читаем ли мы что-то прямо сейчас
        channel = self._channel
        if not channel.delivered and channel.open == 0 and not OsHelper.is_running(self.pid):
            self._misses += 1
        else:
            self._misses = 0

        if self._misses >= self.LIVENESS_MISSES:
            self._logger.warning("pid %s exited without reporting a result", self.pid)
            self._finish(
                error=ResultUndeliverableError(f"process {self.pid} exited without reporting")
            )
            return

        loop = asyncio.get_running_loop()
        self._timers.append(loop.call_later(self._liveness_interval, self._check_liveness))

    def _on_timeout(self) -> None:
        if self._finished:
            return

        assert self._request.timeout is not None
        self._logger.warning("pid %s timed out after %ss", self.pid, self._request.timeout)
        self._finish(error=LaunchTimeoutError(self._request.timeout))

    def cancel(self) -> bool:
        if self._finished:
            return False

        self._logger.info("pid %s cancelled", self.pid)
        self._finish(error=LaunchCancelledError())
        return True

    def _finish(self, value: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        if self._finished:
            return
        self._finished = True

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

        self._channel.close()

        # ребёнок должен был завершиться сам сразу после отправки,
        # SIGKILL группе на случай, если он (или команда) ещё жив.
        # Пока действует SIG_IGN, reap опрашивает, пока ядро его не уберёт.
        OsHelper.kill_group(self._handle.pgid)
        OsHelper.reap(self._handle.pid)

        self._policy.release()

        if error is not None:
            self._logger.debug("pid %s rejected: %r", self.pid, error)
            self._future.reject(error)
        else:
            self._logger.debug("pid %s resolved", self.pid)
            self._future.resolve(value or "")


class ForkLauncher(BaseLauncher):
    """Запуск команд через fork с возвратом результата по loopback TCP"""

    def __init__(self, config: LauncherConfig | None = None, policy: SigchldPolicy | None = None):
        self.config = config or LauncherConfig()
        self.policy = policy or SIGCHLD_POLICY
        self._logger = LoggingHelper.getLogger("launcher")

    def _request(self, command: str | LaunchRequest, timeout: float | None) -> LaunchRequest:
        if isinstance(command, LaunchRequest):
            if timeout is not None:
                return command.model_copy(update={"timeout": timeout})
            if command.timeout is None and self.config.timeout is not None:
                return command.model_copy(update={"timeout": self.config.timeout})
            return command

        return LaunchRequest(
            command=command,
            timeout=timeout if timeout is not None else self.config.timeout,
        )

    def _listen(self) -> socket.socket:
        port = SocketHelper.find_unused_port(
            self.config.host,
            self.config.port_range_start,
            self.config.port_range_end,
            max_attempts=self.config.max_port_attempts,
            probe_timeout=self.config.probe_timeout,
        )

        address = f"{self.config.host}:{port}"
        try:
            return SocketHelper.make_listen_socket(self.config.host, port)
        except OSError as e:
            # между пробой и bind порт занял кто-то ещё, повторять не пытаемся
            raise ChannelBindError(address, e.strerror or str(e)) from e

    async def launch(
        self, command: str | LaunchRequest, timeout: float | None = None
    ) -> AsyncProcess:
        if not OsHelper.supports_fork():
            raise LauncherError(f"fork is not supported on {OsHelper.platform_short()}")

        request = self._request(command, timeout)

        # SIG_IGN должен действовать уже в момент fork, иначе ребёнок,
        # завершившийся раньше, чем мы что-то настроим, останется зомби
        self.policy.acquire()
        try:
            listen_socket = self._listen()
        except BaseException:
            self.policy.release()
            raise

        host, port = listen_socket.getsockname()[:2]
        reporter = ResultReporter(host, port, timeout=self.config.report_timeout)

        try:
            pid = OsHelper.fork()
        except OSError as e:
            listen_socket.close()
            self.policy.release()
            raise ForkError(f"Could not fork process: {e}") from e

        if pid == 0:
            run_child(request, reporter, self.policy, listen_socket, shell=self.config.shell)

        process = AsyncProcess(
            request,
            ChildHandle(pid=pid),
            ResultChannel(listen_socket),
            self.policy,
            liveness_interval=self.config.liveness_interval,
        )

        try:
            await process._start()
        except BaseException as e:
            process._finish(error=ResultUndeliverableError(f"channel failed to start: {e}"))
            raise

        self._logger.info("launched pid %s, result channel %s", pid, process.address)

        return process


_default_launcher: ForkLauncher | None = None


def default_launcher() -> ForkLauncher:
    global _default_launcher
    if _default_launcher is None:
        _default_launcher = ForkLauncher()
    return _default_launcher


async def launch(
    command: str | LaunchRequest,
    *,
    timeout: float | None = None,
    config: LauncherConfig | None = None,
) -> AsyncProcess:
    launcher = ForkLauncher(config) if config is not None else default_launcher()
    return await launcher.launch(command, timeout=timeout)


def run(
    command: str | LaunchRequest,
    *,
    timeout: float | None = None,
    config: LauncherConfig | None = None,
) -> str:
    """Синхронно выполнить команду в фоновом процессе и вернуть её вывод"""

    async def _run() -> str:
        process = await launch(command, timeout=timeout, config=config)
        return await process

    return AsyncioHelper.run_sync(_run())
