"""The socket worker: serves client requests for temperature and light readings."""

from __future__ import annotations

import errno
import signal
import socket
import struct
import threading
from dataclasses import dataclass

from sensorhub.defines import (
    PORT,
    SOCKET_ONLINE,
    AliveBit,
    ErrorMode,
    SharedState,
    Source,
    TemperatureUnit,
)
from sensorhub.messaging import MessageBus, QueueError

TEMP_WARNING_REQ = 1
LUX_WARNING_REQ = 2

_TEXT_SIZE = 150
_REQUEST_FORMAT = struct.Struct(f"<{_TEXT_SIZE}s2xi")
REQUEST_SIZE = _REQUEST_FORMAT.size


@dataclass(frozen=True)
class Request:
    """The fixed-size record exchanged with clients: a string and a number."""

    text: str
    num: int

    def pack(self) -> bytes:
        """Encode as the wire record."""
        encoded = self.text.encode("utf-8")
        if len(encoded) >= _TEXT_SIZE:
            raise ValueError(f"text longer than {_TEXT_SIZE - 1} bytes")
        try:
            return _REQUEST_FORMAT.pack(encoded, self.num)
        except struct.error as exc:
            raise ValueError(str(exc)) from None

    @classmethod
    def unpack(cls, data: bytes) -> Request:
        """Decode a wire record."""
        if len(data) != REQUEST_SIZE:
            raise ValueError(f"expected {REQUEST_SIZE} bytes, got {len(data)}")
        raw, num = _REQUEST_FORMAT.unpack(data)
        text = raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")
        return cls(text, num)


@dataclass(frozen=True)
class Translation:
    """What a client request turns into."""

    log_text: str
    level: str
    dest: Source | None
    command: str | None
    warning_req: int


_UNIT_COMMANDS = {
    TemperatureUnit.CELSIUS: ("Client Requested Temperature in C", "TC"),
    TemperatureUnit.FAHRENHEIT: ("Client Requested Temperature in F", "TF"),
    TemperatureUnit.KELVIN: ("Client Requested Temperature in K", "TK"),
}


def translate_request(request: Request) -> Translation:
    """Map a client request to a log line and a command for a sensor worker."""
    if request.text == "Temperature":
        try:
            log_text, command = _UNIT_COMMANDS[TemperatureUnit(request.num)]
            level = "INFO"
        except ValueError:
            log_text = "Client Requested Temperature in Invalid Parameter - Sending in C"
            command = "TC"
            level = "WARNING"
        return Translation(log_text, level, Source.TEMP, command, TEMP_WARNING_REQ)
    if request.text == "Lux":
        return Translation("Client Requested Lux", "INFO", Source.LUX, "LX", LUX_WARNING_REQ)
    return Translation("Invalid Client Request", "ERROR", None, None, 0)


def _errnum(exc: OSError) -> int:
    return exc.errno or errno.EIO


def kill_socket(bus: MessageBus, host: str = "127.0.0.1", port: int = PORT) -> None:
    """Connect to the server and ask it to exit; raises OSError on failure."""
    def report(text: str, exc: OSError) -> None:
        bus.log_error(Source.MAIN, text, _errnum(exc), ErrorMode.LOGGING_AND_LOCAL)

    try:
        conn = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as exc:
        report("Socket Creation Failed", exc)
        raise
    with conn:
        try:
            socket.inet_pton(socket.AF_INET, host)
        except OSError:
            bus.log_error(
                Source.MAIN,
                "Invalid/Unsupported Target IP Address",
                errno.EINVAL,
                ErrorMode.LOGGING_AND_LOCAL,
            )
            raise
        try:
            conn.connect((host, port))
        except OSError as exc:
            report("Socket Connection Failed", exc)
            raise
        try:
            conn.sendall(Request("Exit", 1).pack())
        except OSError as exc:
            report("Socket Writing Failed", exc)
            raise


def _recv_exact(conn: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = conn.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class SocketWorker:
    """Accepts client connections and forwards their requests to the sensor workers."""

    def __init__(
        self,
        bus: MessageBus,
        state: SharedState,
        host: str = "",
        port: int = PORT,
        response_timeout: float = 2.0,
    ):
        self.bus = bus
        self.state = state
        self.host = host
        self.port = port
        self.response_timeout = response_timeout
        self._listener: socket.socket | None = None
        self._warning_req = 0
        self._reply = Request("", 0)

    @property
    def address(self):
        """The bound (host, port), or None before open()."""
        return self._listener.getsockname() if self._listener is not None else None

    def _report(self, text: str, errnum: int) -> None:
        self.bus.log_error(Source.SOCKET, text, errnum, ErrorMode.LOGGING_AND_LOCAL)

    def _info(self, text: str, level: str = "INFO") -> None:
        self.bus.send(Source.SOCKET, Source.LOGGING, level, text)

    def open(self) -> None:
        """Create the listening socket; raises OSError after reporting a failure."""
        if self._listener is not None:
            return
        self._info(f"Socket Thread successfully created! TID: {threading.get_native_id()}")
        try:
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            self._report("Socket Creation Failed socket()", _errnum(exc))
            raise
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.host, self.port))
        except OSError as exc:
            listener.close()
            self._report("Socket Binding Failed bind()", _errnum(exc))
            raise
        try:
            listener.listen(5)
        except OSError as exc:
            listener.close()
            self._report("Socket Listening Failed listen()", _errnum(exc))
            raise
        self._listener = listener

    def _close_listener(self) -> None:
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def _shutdown(self) -> None:
        self._info("Socket Thread is Exiting")
        try:
            self.bus.remove_queue(Source.SOCKET)
        except QueueError as exc:
            self._report("mq_unlink()", _errnum(exc))
        else:
            self._info("Successfully unlinked Socket queue!")
        self.state.thread_exited(AliveBit.SOCKET)
        self._info("Socket Thread has terminated successfully and will now exit")

    def _warning_value(self) -> int:
        if self._warning_req == TEMP_WARNING_REQ:
            return self.state.temp_warning
        if self._warning_req == LUX_WARNING_REQ:
            return self.state.lux_warning
        return 0

    def handle(self, request: Request) -> Request | None:
        """Process one request; return the reply, or None when the client asked to exit."""
        if request.text == "Exit":
            self._shutdown()
            return None

        translation = translate_request(request)
        if translation.warning_req:
            self._warning_req = translation.warning_req
        if translation.dest is not None:
            self.bus.send(Source.SOCKET, translation.dest, "INFO", translation.command)
        self._info(translation.log_text, translation.level)

        try:
            response = self.bus.receive(Source.SOCKET, timeout=self.response_timeout)
        except QueueError as exc:
            self._report("mq_timedreceive()", _errnum(exc))
            self._reply = Request(self._reply.text, 0)
        else:
            self._info(f"Got Response from Queue: {response.text}")
            self._reply = Request(response.text, self._warning_value())
        return self._reply

    def _serve(self, conn: socket.socket) -> bool:
        """Serve one connection; return False once the worker should stop."""
        try:
            data = _recv_exact(conn, REQUEST_SIZE)
        except OSError as exc:
            self._report("Socket Reading Failed read()", _errnum(exc))
            return True
        try:
            request = Request.unpack(data)
        except ValueError:
            self._report("Socket Reading Failed read()", errno.ENOMSG)
            return True

        reply = self.handle(request)
        if reply is None:
            return False
        try:
            conn.sendall(reply.pack())
        except (OSError, ValueError) as exc:
            errnum = _errnum(exc) if isinstance(exc, OSError) else errno.EMSGSIZE
            self._report("Socket Writing Failed write()", errnum)
        else:
            self._info("Data sent Successfully to the Remote Client")
        return True

    def run(self) -> None:
        """Serve clients until an exit request or a user signal arrives."""
        try:
            self.open()
        except OSError:
            self._report("Socket Init Failed... Exiting Thread", errno.ENOMSG)
            return
        self._info("Socket Init Succeeded")
        self.bus.create_queue(Source.SOCKET)

        try:
            while self.state.flag not in (signal.SIGUSR1, signal.SIGUSR2):
                self.state.socket_state = SOCKET_ONLINE
                self.state.mark_alive(AliveBit.SOCKET)
                try:
                    conn, _ = self._listener.accept()
                except OSError as exc:
                    self._report("Socket Accepting Failed accept()", _errnum(exc))
                    continue
                with conn:
                    if not self._serve(conn):
                        return
        finally:
            self._close_listener()