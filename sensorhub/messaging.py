"""In-process message queues connecting the workers, and error reporting."""

from __future__ import annotations

import errno
import os
import queue
import sys
import threading
from typing import TextIO

from sensorhub.defines import (
    MAX_QUEUE_MESSAGES,
    ErrorMode,
    Message,
    Source,
    current_time,
    source_name,
)

NO_DESTINATION_LEVEL = "WARNING - No destination thread for this msg!"


class QueueError(OSError):
    """A message queue operation failed."""


class MessageBus:
    """One bounded message queue per worker."""

    def __init__(self, output: TextIO | None = None, maxsize: int = MAX_QUEUE_MESSAGES):
        self._queues: dict[Source, queue.Queue] = {}
        self._lock = threading.Lock()
        self._output = output
        self._maxsize = maxsize

    def _stream(self) -> TextIO:
        return self._output if self._output is not None else sys.stdout

    def _queue_for(self, dest: int) -> queue.Queue:
        with self._lock:
            found = self._queues.get(dest)
        if found is None:
            raise QueueError(errno.ENOENT, f"no queue for {source_name(dest)}")
        return found

    def create_queue(self, dest: int) -> None:
        """Create the queue of a worker; an existing queue is kept."""
        with self._lock:
            self._queues.setdefault(Source(dest), queue.Queue(self._maxsize))

    def remove_queue(self, dest: int) -> None:
        """Remove the queue of a worker."""
        with self._lock:
            removed = self._queues.pop(dest, None)
        if removed is None:
            raise QueueError(errno.ENOENT, f"no queue for {source_name(dest)}")

    def send(self, src: int, dst: int, level: str, text: str) -> Message | None:
        """Send a message; return it, or None when delivery failed and was reported."""
        try:
            dest = Source(dst)
        except ValueError:
            dest = Source.LOGGING
            level = NO_DESTINATION_LEVEL
        message = Message(int(src), int(dest), level, text)
        with self._lock:
            target = self._queues.get(dest)
        if target is None:
            self.log_error(
                0,
                f"send() => open, attempted to open '{message.dest}' queue, "
                f"called by Thread '{message.source}'",
                errno.ENOENT,
                ErrorMode.LOCAL_ONLY,
            )
            return None
        target.put(message)
        return message

    def receive(self, dest: int, timeout: float | None = None) -> Message:
        """Take the next message for a worker.

        A timeout of None blocks, 0 does not wait at all.
        """
        source_queue = self._queue_for(dest)
        try:
            if timeout == 0:
                return source_queue.get_nowait()
            return source_queue.get(timeout=timeout)
        except queue.Empty:
            if timeout == 0:
                raise QueueError(errno.EAGAIN, os.strerror(errno.EAGAIN)) from None
            raise QueueError(errno.ETIMEDOUT, os.strerror(errno.ETIMEDOUT)) from None

    def log_error(self, src: int, message: str, errnum: int, mode: int) -> str:
        """Report an error locally, to the logger, or both; return the report text."""
        report = f"{message}: {os.strerror(errnum)}"
        local = f"[{current_time():.6f}] Error in Thread '{source_name(src)}' => {report}\n\n"
        if mode == ErrorMode.LOGGING_ONLY:
            self.send(src, Source.LOGGING, "ERROR", report)
        elif mode == ErrorMode.LOGGING_AND_LOCAL:
            self._stream().write(local)
            self.send(src, Source.LOGGING, "ERROR", report)
        else:
            self._stream().write(local)
        return report


def alive_check(bus: MessageBus, chosen_dest: int, message: Message) -> bool:
    """Answer a liveness probe from the supervisor, if the message is one."""
    if (
        message.source == Source.MAIN
        and message.dest == chosen_dest
        and message.text == "Are you alive?"
    ):
        bus.send(message.dest, Source.MAIN, "INFO", "Yes, I am alive")
        return True
    return False


def alive_check_response(bus: MessageBus, chosen_dest: int, message: Message) -> bool:
    """Check that a reply to a liveness probe came from the probed worker."""
    name = source_name(chosen_dest)
    if message.source == chosen_dest and message.text == "Yes, I am alive":
        bus.send(
            Source.MAIN,
            Source.LOGGING,
            "INFO",
            f"Received response from '{name}': {message.text}",
        )
        return True
    bus.send(
        Source.MAIN,
        Source.LOGGING,
        "INFO",
        f"Expected response from '{name}' but got from '{int(message.source)}'???",
    )
    return False