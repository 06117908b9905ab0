import sys
import os
import signal
import errno
import time


class OsHelper:
    @staticmethod
    def platform_short() -> str:
        if sys.platform.startswith("linux"):
            return "linux"
        elif sys.platform == "darwin":
            return "macos"
        elif sys.platform == "win32":
            return "windows"
        else:
            return "unknown"

    @staticmethod
    def supports_fork() -> bool:
        return hasattr(os, "fork") and hasattr(os, "setsid")

    @staticmethod
    def getpid() -> int:
        return os.getpid()

    @staticmethod
    def fork() -> int:
        return os.fork()

    @staticmethod
    def setsid() -> int:
        """Сделать текущий процесс лидером новой сессии, возвращает id сессии"""
        return os.setsid()

    @staticmethod
    def exit(exit_code: int):
        sys.exit(exit_code)

    @staticmethod
    def terminate(exit_code: int):
        """
        Немедленное завершение форкнутого процесса.

        Без atexit, без финализаторов и без сброса буферов родителя:
        всё это принадлежит родительскому процессу, ребёнок не должен их трогать.
        """
        os._exit(exit_code)

    @staticmethod
    def kill_group(pid: int, sig: int = signal.SIGKILL) -> bool:
        """
        Послать сигнал группе процессов pid.

        Если группы ещё нет (ребёнок не успел вызвать setsid), сигнал уходит самому процессу.
        Возвращает False, если убивать уже некого.
        """
        try:
            os.killpg(pid, sig)
            return True
        except ProcessLookupError:
            pass

        try:
            os.kill(pid, sig)
            return True
        except ProcessLookupError:
            return False

    @staticmethod
    def reap(pid: int, timeout: float = 1.0, interval: float = 0.005) -> int | None:
        """
        Забрать статус завершившегося ребёнка.

        При SIGCHLD=SIG_IGN ядро само убирает детей и waitpid отвечает ECHILD,
        поэтому None означает "уже убран ядром" (или не дождались за timeout).
        Опрос идёт с WNOHANG: POSIX разрешает блокирующему waitpid под SIG_IGN
        ждать смерти всех детей, а не только этого.
        Вызывать после SIGKILL, тогда ожидание занимает миллисекунды.
        """
        deadline = time.monotonic() + timeout
        while True:
            try:
                waited, status = os.waitpid(pid, os.WNOHANG)
            except ChildProcessError:
                return None

            if waited == pid:
                return os.waitstatus_to_exitcode(status)

            if time.monotonic() >= deadline:
                return None

            time.sleep(interval)

    @staticmethod
    def is_running(pid: int) -> bool:
        """Жив ли процесс (зомби тоже считается мёртвым)"""
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # процесс есть, но чужой
            return True

        if sys.platform.startswith("linux"):
            try:
                with open(f"/proc/{pid}/stat") as f:
                    # формат: pid (comm) state ...; comm может содержать пробелы и скобки
                    state = f.read().rsplit(")", 1)[1].split()[0]
            except FileNotFoundError:
                return False
            except OSError as e:
                if e.errno == errno.ESRCH:
                    return False
                raise

            return state != "Z"

        return True
