import asyncio
import os
import signal
import sys

import pytest

from asyncproc.core.domain.errors import (
    ChannelBindError,
    ChildExecutionError,
    ForkError,
    LaunchCancelledError,
    LaunchTimeoutError,
    NonZeroExitError,
    ResultUndeliverableError,
)
from asyncproc.core.domain.future import FutureState
from asyncproc.core.domain.launcher import ForkLauncher, LauncherConfig, launch, run
from asyncproc.core.domain.payload import ResultPayload
from asyncproc.core.domain.request import LaunchRequest
from asyncproc.core.helper.os import OsHelper
from asyncproc.core.helper.signal import SIGCHLD_POLICY
from asyncproc.core.helper.socket import SocketHelper


pytestmark = pytest.mark.skipif(
    not OsHelper.supports_fork(), reason="fork is required"
)


@pytest.fixture
def launcher():
    return ForkLauncher(LauncherConfig(liveness_interval=0.1))


def assert_gone(pid: int):
    assert not OsHelper.is_running(pid)
    if sys.platform.startswith("linux"):
        # ни живого процесса, ни зомби
        assert not os.path.exists(f"/proc/{pid}")


# --- Успешные команды ------------------------------------------------------------


@pytest.mark.asyncio
async def test_echo_resolves_with_output(launcher):
    process = await launcher.launch("echo hello")

    assert await process == "hello"
    assert process.future.state is FutureState.RESOLVED


@pytest.mark.asyncio
async def test_shell_expression(launcher):
    process = await launcher.launch("a=$( expr 10 - 3 ); echo $a")

    assert await process == "7"


@pytest.mark.asyncio
async def test_output_lines_joined_without_trailing_newline(launcher):
    process = await launcher.launch("printf 'a\\nb\\nc\\n'")

    assert await process == "a\nb\nc"


@pytest.mark.asyncio
async def test_control_characters_survive(launcher):
    process = await launcher.launch("printf 'a\\fb\\rc\\n'")

    assert await process == "a\x0cb\rc"


@pytest.mark.asyncio
async def test_stderr_is_not_captured(launcher):
    process = await launcher.launch("echo noise 1>&2; echo signal")

    assert await process == "signal"


@pytest.mark.asyncio
async def test_launch_returns_before_command_finishes(launcher):
    process = await launcher.launch("sleep 0.5; echo done")

    assert not process.future.done()
    assert await process == "done"


@pytest.mark.asyncio
async def test_launch_accepts_request_object(launcher):
    process = await launcher.launch(LaunchRequest(command="echo from request"))

    assert process.request.command == "echo from request"
    assert await process == "from request"


# --- Ошибки команды ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_command_rejects_with_non_zero_exit(launcher):
    process = await launcher.launch("no-bananas")

    with pytest.raises(NonZeroExitError) as exc:
        await process

    assert exc.value.exit_code == 127


@pytest.mark.asyncio
async def test_exit_code_is_embedded(launcher):
    process = await launcher.launch("echo partial; exit 5")

    with pytest.raises(NonZeroExitError) as exc:
        await process

    assert exc.value.exit_code == 5
    assert exc.value.output == "partial"
    assert str(exc.value) == "Exit code 5: partial"
    assert process.future.state is FutureState.REJECTED


@pytest.mark.asyncio
async def test_missing_shell_is_execution_error():
    launcher = ForkLauncher(LauncherConfig(shell="/nonexistent/shell"))
    process = await launcher.launch("echo hello")

    with pytest.raises(ChildExecutionError) as exc:
        await process

    assert "Could not run the command" in exc.value.message
    assert not isinstance(exc.value, NonZeroExitError)


# --- Процессы и сигналы ------------------------------------------------------------


@pytest.mark.asyncio
async def test_child_is_gone_after_settlement(launcher):
    process = await launcher.launch("echo bye")
    await process

    assert_gone(process.pid)


@pytest.mark.asyncio
async def test_child_is_gone_after_rejection(launcher):
    process = await launcher.launch("exit 2")

    with pytest.raises(NonZeroExitError):
        await process

    assert_gone(process.pid)


@pytest.mark.asyncio
async def test_sigchld_disposition_restored(launcher):
    before = signal.getsignal(signal.SIGCHLD)

    process = await launcher.launch("sleep 0.2")
    assert signal.getsignal(signal.SIGCHLD) == signal.SIG_IGN

    await process

    assert signal.getsignal(signal.SIGCHLD) == before
    assert SIGCHLD_POLICY.depth == 0


@pytest.mark.asyncio
async def test_concurrent_launches(launcher):
    first = await launcher.launch("sleep 0.3; echo first")
    second = await launcher.launch("echo second")

    assert first.address != second.address
    assert SIGCHLD_POLICY.depth == 2

    # второй не ждёт первого
    assert await asyncio.wait_for(second, timeout=5) == "second"
    assert not first.future.done()

    assert await first == "first"

    assert_gone(first.pid)
    assert_gone(second.pid)
    assert SIGCHLD_POLICY.depth == 0


@pytest.mark.asyncio
async def test_gathered_launches(launcher):
    processes = await asyncio.gather(
        *(launcher.launch(f"echo {i}") for i in range(4))
    )

    assert await asyncio.gather(*processes) == ["0", "1", "2", "3"]
    assert len({p.address for p in processes}) == 4


# --- Таймаут, отмена, потерянный результат -----------------------------------------


@pytest.mark.asyncio
async def test_timeout_kills_child(launcher):
    process = await launcher.launch("sleep 5; echo never", timeout=0.3)

    with pytest.raises(LaunchTimeoutError) as exc:
        await process

    assert exc.value.timeout == 0.3
    assert_gone(process.pid)


@pytest.mark.asyncio
async def test_config_timeout_is_default():
    launcher = ForkLauncher(LauncherConfig(timeout=0.3))
    process = await launcher.launch("sleep 5")

    assert process.request.timeout == 0.3
    with pytest.raises(LaunchTimeoutError):
        await process


@pytest.mark.asyncio
async def test_cancel(launcher):
    process = await launcher.launch("sleep 5")

    assert process.cancel()
    assert not process.cancel()

    with pytest.raises(LaunchCancelledError):
        await process

    assert_gone(process.pid)


@pytest.mark.asyncio
async def test_cancel_after_result_is_noop(launcher):
    process = await launcher.launch("echo ok")
    await process

    assert not process.cancel()
    assert process.future.result() == "ok"


@pytest.mark.asyncio
async def test_externally_killed_child_rejects(launcher):
    process = await launcher.launch("sleep 5")
    await asyncio.sleep(0.1)

    os.kill(process.pid, signal.SIGKILL)

    with pytest.raises(ResultUndeliverableError):
        await asyncio.wait_for(process, timeout=5)


@pytest.mark.asyncio
async def test_killed_child_rejects_after_empty_connection(launcher):
    process = await launcher.launch("sleep 5")
    host, port = process.address.rsplit(":", 1)

    # соседний запуск проверяет этот порт: соединение без данных
    assert await asyncio.to_thread(SocketHelper.is_port_open, host, int(port))
    await asyncio.sleep(0.1)

    os.kill(process.pid, signal.SIGKILL)

    with pytest.raises(ResultUndeliverableError):
        await asyncio.wait_for(process, timeout=3)

    assert_gone(process.pid)


@pytest.mark.asyncio
async def test_malformed_result_rejects(launcher, monkeypatch):
    # форк наследует подмену: ребёнок отправит не JSON
    monkeypatch.setattr(ResultPayload, "encode", lambda self: b"not a result")

    process = await launcher.launch("echo hello")

    with pytest.raises(ResultUndeliverableError) as exc:
        await asyncio.wait_for(process, timeout=5)

    assert "malformed" in str(exc.value)
    assert_gone(process.pid)


# --- Ошибки конструирования ---------------------------------------------------------


@pytest.mark.asyncio
async def test_fork_failure_raises(launcher, monkeypatch):
    def fail():
        raise OSError("resource temporarily unavailable")

    monkeypatch.setattr(OsHelper, "fork", fail)

    with pytest.raises(ForkError):
        await launcher.launch("echo hello")

    assert SIGCHLD_POLICY.depth == 0


@pytest.mark.asyncio
async def test_bind_failure_raises(launcher, monkeypatch):
    def busy(host, port, backlog=8):
        raise OSError(98, "Address already in use")

    monkeypatch.setattr(SocketHelper, "make_listen_socket", busy)

    with pytest.raises(ChannelBindError) as exc:
        await launcher.launch("echo hello")

    assert exc.value.reason == "Address already in use"
    assert SIGCHLD_POLICY.depth == 0


# --- Модульные функции ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_module_launch():
    process = await launch("echo module")

    assert await process == "module"
    assert process.pid > 0


def test_run_sync():
    assert run("echo sync") == "sync"


def test_run_sync_raises_command_failure():
    with pytest.raises(NonZeroExitError):
        run("exit 9")
