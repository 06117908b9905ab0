import random
import socket
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from asyncproc.core.domain.errors import PortAllocationError


class SoOpt(BaseModel):
    # --- COMMON ---
    # Можно повторно биндиться на тот же адрес/порт после закрытия сокета
    SO_REUSEADDR: Optional[int] = Field(
        default=None,
        alias="reuseaddr",
        description="Allow reuse of local addresses after socket close",
        json_schema_extra={"level": socket.SOL_SOCKET, "opt": socket.SO_REUSEADDR},
    )

    @field_validator("SO_REUSEADDR")
    def validate_boolean_opts(cls, v):
        if v not in (0, 1, None):
            raise ValueError("This socket option must be 0, 1, or None")
        return v


class TcpOpts(BaseModel):
    # Отключить алгоритм Нейгла: результат уходит одним коротким сообщением
    TCP_NODELAY: Optional[int] = Field(
        default=None,
        alias="nodelay",
        description="Disable Nagle's algorithm (send small packets immediately)",
        json_schema_extra={"level": socket.IPPROTO_TCP, "opt": socket.TCP_NODELAY},
    )

    @field_validator("TCP_NODELAY")
    def validate_boolean_opts(cls, v):
        if v not in (0, 1, None):
            raise ValueError("This socket option must be 0, 1, or None")
        return v


class SocketOpts(BaseModel):
    so: SoOpt = Field(default_factory=SoOpt)
    tcp: TcpOpts = Field(default_factory=TcpOpts)


class SocketHelper:
    # динамический диапазон, из которого берутся одноразовые порты
    PORT_RANGE_START = 1024
    PORT_RANGE_END = 65535

    @staticmethod
    def setsockopt(sock: socket.socket, opts: SocketOpts) -> socket.socket:
        """Apply socket options defined in SocketOpts including nested models"""

        def apply_options(model: BaseModel):
            for name, field in type(model).model_fields.items():
                value = getattr(model, name)

                if value is None:
                    continue

                # вложенная модель
                if isinstance(value, BaseModel):
                    apply_options(value)
                    continue

                meta = field.json_schema_extra
                if not isinstance(meta, dict):
                    continue

                level = meta.get("level")
                opt = meta.get("opt")

                if not isinstance(level, int) or not isinstance(opt, int):
                    continue

                sock.setsockopt(level, opt, value)

        apply_options(opts)

        return sock

    @staticmethod
    def make_listen_socket(host: str, port: int, backlog: int = 8) -> socket.socket:
        """
        Слушающий сокет для одноразового канала.

        SO_REUSEPORT намеренно не ставим: занятый порт должен давать EADDRINUSE,
        иначе два запуска могут поделить один адрес.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            SocketHelper.setsockopt(sock, opts=SocketOpts(so=SoOpt(reuseaddr=1)))
            sock.bind((host, port))
            sock.listen(backlog)
        except OSError:
            sock.close()
            raise

        sock.set_inheritable(False)

        return sock

    @staticmethod
    def make_report_socket(host: str, port: int, timeout: float) -> socket.socket:
        """Клиентский сокет ребёнка для отправки результата родителю"""
        sock = socket.create_connection((host, port), timeout=timeout)
        try:
            SocketHelper.setsockopt(sock, opts=SocketOpts(tcp=TcpOpts(nodelay=1)))
        except OSError:
            sock.close()
            raise

        return sock

    @staticmethod
    def find_unused_port(
        host: str = "127.0.0.1",
        port_range_start: int = PORT_RANGE_START,
        port_range_end: int = PORT_RANGE_END,
        max_attempts: int | None = None,
        probe_timeout: float = 1.0,
    ) -> int:
        """
        Найти свободный порт случайным перебором.

        Порт считается свободным, если connect на него получает отказ.
        Любая другая ошибка соединения это не "занято", а поломка окружения,
        поэтому она пробрасывается наружу как есть.
        Без max_attempts перебор не ограничен, пока в диапазоне есть непроверенные порты.
        """
        if port_range_start > port_range_end:
            raise ValueError(
                f"invalid port range {port_range_start} - {port_range_end}"
            )

        tried: set[int] = set()
        total = port_range_end - port_range_start + 1
        attempts = 0

        while len(tried) < total:
            if max_attempts is not None and attempts >= max_attempts:
                raise PortAllocationError(
                    f"No free port found after {attempts} attempts "
                    f"in range {port_range_start} - {port_range_end}",
                    attempts=attempts,
                )

            port = random.randint(port_range_start, port_range_end)
            if port in tried:
                continue

            attempts += 1
            if not SocketHelper.is_port_open(host, port, probe_timeout):
                return port

            tried.add(port)

        raise PortAllocationError(
            f"No free ports in range {port_range_start} - {port_range_end}",
            attempts=attempts,
        )

    @staticmethod
    def is_port_open(host: str, port: int, timeout: float = 1.0) -> bool:
        """Слушает ли кто-то порт: True - занят, False - connect получил отказ"""
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except ConnectionRefusedError:
            return False

    @staticmethod
    def socket_addr(sock: socket.socket) -> str:
        addr, port = sock.getsockname()[:2]
        return f"{addr}:{port}"
