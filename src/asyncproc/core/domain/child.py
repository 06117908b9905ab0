import signal
import socket
import subprocess
from typing import NoReturn

from asyncproc.core.domain.channel import ResultReporter
from asyncproc.core.domain.payload import ResultPayload
from asyncproc.core.domain.request import LaunchRequest
from asyncproc.core.helper.os import OsHelper
from asyncproc.core.helper.signal import SigchldPolicy


def execute(command: str, shell: str = "/bin/sh") -> tuple[int, list[str]]:
    """
    Выполнить команду через shell и вернуть (код выхода, строки stdout).

    stderr уходит в /dev/null, иначе он попадёт в терминал родителя.
    OSError (shell не запустился) пробрасывается.
    """
    completed = subprocess.run(
        command,
        shell=True,
        executable=shell,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        check=False,
    )
    output = completed.stdout.decode("utf-8", errors="replace")

    # строки режем только по \n, остальные управляющие символы остаются как есть
    if output.endswith("\n"):
        output = output[:-1]

    return completed.returncode, output.split("\n") if output else []


def detach_and_execute(request: LaunchRequest, shell: str = "/bin/sh") -> tuple[int, ResultPayload]:
    """
    Отцепиться от сессии родителя и выполнить команду.

    Возвращает (код выхода самого форка, сообщение для родителя).
    Код форка 1 означает, что до команды дело не дошло или она не запустилась.
    """
    try:
        pid = OsHelper.getpid()
    except OSError as e:
        return 1, ResultPayload.failed(
            RuntimeError(f"Could not get child process PID within itself: {e}")
        )

    try:
        OsHelper.setsid()
    except OSError as e:
        return 1, ResultPayload.failed(
            RuntimeError(f"Could not make background process {pid} session leader: {e}")
        )

    try:
        code, lines = execute(request.command, shell)
    except OSError as e:
        return 1, ResultPayload.failed(
            RuntimeError(f'Could not run the command "{request.command}" (PID {pid}): {e}')
        )

    return 0, ResultPayload.completed(code, lines)


def run_child(
    request: LaunchRequest,
    reporter: ResultReporter,
    policy: SigchldPolicy,
    listen_socket: socket.socket | None = None,
    shell: str = "/bin/sh",
) -> NoReturn:
    """Тело форкнутого процесса. В код родителя не возвращается никогда"""
    try:
        # копия слушающего сокета родителя ребёнку не нужна
        if listen_socket is not None:
            listen_socket.close()

        # wakeup fd указывает на self-pipe event loop родителя:
        # сигналы ребёнка не должны будить чужой loop
        signal.set_wakeup_fd(-1)
        policy.restore_in_child()

        fork_exit_code, payload = detach_and_execute(request, shell)
    except BaseException as e:
        fork_exit_code, payload = 1, ResultPayload.failed(e)

    try:
        # ошибки отправки reporter глотает сам: слушать их всё равно некому
        reporter.report(payload)
    finally:
        OsHelper.terminate(fork_exit_code)
