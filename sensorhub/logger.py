"""The logging worker: writes every message it receives to the log file."""

from __future__ import annotations

import errno
import threading

from sensorhub.defines import (
    DEBUG_PRINTF,
    AliveBit,
    ErrorMode,
    Message,
    SharedState,
    Source,
    current_time,
    source_name,
)
from sensorhub.messaging import MessageBus, QueueError

_BANNER = (
    "***************************************\n",
    "*     Sensor Hub                      *\n",
    "*       temperature and light log     *\n",
    "*                                     *\n",
    "*  Logging worker                     *\n",
    "*                         v1.8(final) *\n",
    "***************************************\n\n",
)


def init_log_file(path, tid) -> str:
    """Create (or truncate) the log file, write its header and return the header.

    Raises OSError when the file cannot be opened.
    """
    header = (
        f"[{current_time():.6f}] Logging Thread: Logfile successfully created! TID: {tid}\n\n"
        + "".join(_BANNER)
    )
    try:
        with open(path, "w", encoding="utf-8") as log_file:
            log_file.write(header)
    except OSError:
        print(f"!!! FATAL ERROR: Could not open log file: {path}")
        raise
    if DEBUG_PRINTF:
        print(header, end="")
    return header


def format_entry(message: Message, timestamp: float) -> str:
    """Render one log entry for a message."""
    source_text = source_name(message.source)
    tail = f"\n\t\tL-> Source: '{source_text}'\n\n"
    try:
        dest_text = source_name(Source(message.dest))
    except ValueError:
        return (
            f"[{timestamp:.6f}] Unknown Thread '{message.dest}'({message.level}): "
            f"{message.text}{tail}"
        )
    return f"[{timestamp:.6f}] {dest_text}({message.level}): {message.text}{tail}"


def log_message(path, message: Message) -> str | None:
    """Append a message to the log file; return the entry, or None if the file failed."""
    try:
        log_file = open(path, "a", encoding="utf-8")
    except OSError:
        print(f"!! ERROR: Could not open log file: {path}")
        print(f"\t|--> Logging from source '{message.source}' failed")
        print(f"\t|--> Destination: {message.dest}")
        print(f"\t|--> Log Level: {message.level}")
        print(f"\tL--> Message: {message.text}\n")
        return None
    entry = format_entry(message, current_time())
    with log_file:
        log_file.write(entry)
    if DEBUG_PRINTF:
        print(entry, end="")
    return entry


class LoggingWorker:
    """Receives messages addressed to the logger and appends them to the log file."""

    def __init__(
        self,
        bus: MessageBus,
        state: SharedState,
        path,
        poll_interval: float = 0.5,
    ):
        self.bus = bus
        self.state = state
        self.path = path
        self.poll_interval = poll_interval

    def run(self) -> None:
        """Log messages until no other worker holds the logger open."""
        init_log_file(self.path, threading.get_native_id())
        self.bus.create_queue(Source.LOGGING)

        while self.state.log_kill_safe > 0:
            try:
                message = self.bus.receive(Source.LOGGING, timeout=self.poll_interval)
            except QueueError as exc:
                if exc.errno == errno.ETIMEDOUT:
                    continue
                self.bus.log_error(
                    Source.LOGGING, "mq_receive()", exc.errno or errno.EIO, ErrorMode.LOCAL_ONLY
                )
                continue
            log_message(self.path, message)
            self.state.mark_alive(AliveBit.LOGGING)

        print(
            f"[{current_time():.6f}] Logging pThread(INFO): No other threads are alive "
            "- Killing Logging Thread\n"
        )
        with self.state.var_lock:
            self.state.alive = AliveBit(int(self.state.alive) & ~int(AliveBit.LOGGING))

        try:
            self.bus.remove_queue(Source.LOGGING)
        except QueueError as exc:
            self.bus.log_error(
                Source.LOGGING, "mq_unlink()", exc.errno or errno.EIO, ErrorMode.LOCAL_ONLY
            )
        else:
            print(f"[{current_time():.6f}] Logging pThread: Successfully unlinked Logging queue!\n")

        print(
            f"[{current_time():.6f}] Logging Thread: Logging Thread has terminated "
            "successfully and will now exit\n"
        )