import asyncio
import socket
from typing import Callable, Optional

from asyncproc.core.domain.payload import ResultPayload
from asyncproc.core.helper.logging import LoggingHelper
from asyncproc.core.helper.socket import SocketHelper


class ResultChannel:
    """
    Одноразовый loopback сервер на стороне родителя.

    Протокол: тело одного соединения целиком, до закрытия соединения ребёнком.
    Никакой другой разметки нет, поэтому отправитель обязан закрыть запись
    после отправки (shutdown(SHUT_WR)), а мы закрываем соединение со своей стороны,
    как только дочитали: ребёнок ждёт этого закрытия и только потом завершается.

    Пустые соединения (чужие пробы портов) пропускаются, первое непустое
    тело передаётся в on_message ровно один раз.
    """

    def __init__(self, sock: socket.socket):
        self._socket = sock
        self._address = SocketHelper.socket_addr(sock)
        self._server: Optional[asyncio.Server] = None
        self._on_message: Optional[Callable[[bytes], None]] = None
        self._delivered = False
        self._closed = False
        self._connections = 0
        self._open = 0
        self._logger = LoggingHelper.getLogger("channel")

    @property
    def address(self) -> str:
        return self._address

    @property
    def delivered(self) -> bool:
        return self._delivered

    @property
    def connections(self) -> int:
        """Сколько соединений было принято (включая пустые)"""
        return self._connections

    @property
    def open(self) -> int:
        """Сколько соединений открыто прямо сейчас"""
        return self._open

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self, on_message: Callable[[bytes], None]) -> None:
        if self._server is not None:
            raise RuntimeError("channel is already serving")
        if self._closed:
            raise RuntimeError("channel is closed")

        self._on_message = on_message
        self._server = await asyncio.start_server(self._handle, sock=self._socket)
        self._logger.debug("listening on %s", self._address)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._connections += 1
        self._open += 1
        peer = writer.get_extra_info("peername")

        try:
            body = await reader.read()
        except (ConnectionError, OSError) as e:
            self._logger.warning("connection from %s on %s broke: %s", peer, self._address, e)
            body = b""
        finally:
            self._open -= 1
            writer.close()

        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

        if not body:
            self._logger.debug("empty connection from %s on %s, ignored", peer, self._address)
            return

        if self._delivered or self._on_message is None:
            self._logger.warning("extra message on %s dropped", self._address)
            return

        self._delivered = True
        self._logger.debug("received %d bytes on %s", len(body), self._address)
        self.close()
        self._on_message(body)

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        if self._server is not None:
            self._server.close()
        else:
            self._socket.close()

        self._logger.debug("closed %s", self._address)


class ResultReporter:
    """
    Отправка результата на стороне ребёнка.

    Одна попытка: если не вышло, результат теряется. Ребёнок всё равно
    сразу завершается, а родитель узнает о потере по смерти процесса.
    """

    def __init__(self, host: str, port: int, timeout: float = 5.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._logger = LoggingHelper.getLogger("child")

    def report(self, payload: ResultPayload) -> bool:
        try:
            with SocketHelper.make_report_socket(self.host, self.port, self.timeout) as sock:
                sock.sendall(payload.encode())
                sock.shutdown(socket.SHUT_WR)
                # ждём, пока родитель дочитает и закроет соединение
                while sock.recv(4096):
                    pass
        except OSError as e:
            self._logger.debug("report to %s:%s lost: %s", self.host, self.port, e)
            return False

        return True
