"""Shared constants, the message type and the state shared by all workers."""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field

# Echo every log entry to stdout as well as to the log file.
DEBUG_PRINTF = True


class Source(enum.IntEnum):
    """Identifies a worker, used as message source and destination."""

    MAIN = 1
    LOGGING = 2
    SOCKET = 3
    TEMP = 4
    LUX = 5


class ErrorMode(enum.IntEnum):
    """Where an error report goes."""

    LOGGING_AND_LOCAL = 0x01
    LOGGING_ONLY = 0x02
    LOCAL_ONLY = 0x03


class AliveBit(enum.IntFlag):
    """Heartbeat bits set by each worker and collected by the supervisor."""

    NONE = 0
    LOGGING = 0b00000001
    SOCKET = 0b00000010
    TEMP = 0b00000100
    LUX = 0b00001000


class TemperatureUnit(enum.IntEnum):
    """Unit a client may request a temperature in."""

    CELSIUS = 1
    FAHRENHEIT = 2
    KELVIN = 3


QUEUE_NAMES = {
    Source.MAIN: "/MAIN_POSIX_Q",
    Source.LOGGING: "/LOGGING_POSIX_Q",
    Source.SOCKET: "/SOCKET_POSIX_Q",
    Source.TEMP: "/TEMP_POSIX_Q",
    Source.LUX: "/LUX_POSIX_Q",
}
MAX_QUEUE_MESSAGES = 10

TEMPERATURE_SIGNAL = 0xF0
LUX_SIGNAL = 0xF1

SENSOR_ONLINE = 1
SENSOR_OFFLINE = 0
SOCKET_ONLINE = 1
SOCKET_OFFLINE = 0

PORT = 8080

TIME_HIGH = 0x02  # 402 ms
TIME_MED = 0x01  # 101 ms
TIME_LOW = 0x00  # 13 ms
GAIN = 0x10  # maximum gain

TIMER_INTERVAL_MS = 250
SENSOR_RETRY_PERIOD_MS = 5000
COUNTER_THRESHOLD = SENSOR_RETRY_PERIOD_MS // TIMER_INTERVAL_MS
ALIVE_TESTING_INTERVAL = 10  # seconds

I2C_BUS = "/dev/i2c-2"

# (port, pin) of the four user LEDs, USR0 to USR3.
USR_LEDS = ((1, 21), (1, 22), (1, 23), (1, 24))

DEFAULT_LOG_FILE = "./LogFile.txt"

_SOURCE_NAMES = {
    Source.MAIN: "Main Thread",
    Source.LOGGING: "Logging Thread",
    Source.SOCKET: "Socket Thread",
    Source.TEMP: "Temp Thread",
    Source.LUX: "Lux Thread",
}


def current_time() -> float:
    """Return the wall-clock time in seconds, with microsecond resolution."""
    return time.time()


def source_name(source: int) -> str:
    """Return the readable name of a worker, or 'Unknown Thread'."""
    try:
        return _SOURCE_NAMES[Source(source)]
    except ValueError:
        return "Unknown Thread"


@dataclass(frozen=True)
class Message:
    """A message passed between workers."""

    source: int
    dest: int
    level: str
    text: str


@dataclass
class SharedState:
    """State shared between the supervisor, the timer and the workers."""

    flag: int = 0
    log_kill_safe: int = 3
    alive: AliveBit = AliveBit.NONE
    counter: int = 0
    temp_error_retry: int = 0
    lux_error_retry: int = 0
    temp_sensor_state: int = SENSOR_OFFLINE
    lux_sensor_state: int = SENSOR_OFFLINE
    socket_state: int = SOCKET_OFFLINE
    temp_warning: int = 0x00  # normal
    lux_warning: int = 0x02  # day
    sensor_lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )
    var_lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def mark_alive(self, bit: int) -> None:
        """Set a worker's heartbeat bit."""
        with self.var_lock:
            self.alive = AliveBit(self.alive | int(bit))

    def take_alive(self) -> AliveBit:
        """Return the heartbeat bits collected so far and clear them."""
        with self.var_lock:
            current = self.alive
            self.alive = AliveBit.NONE
        return current

    def thread_exited(self, bit: int) -> int:
        """Record a worker's exit; return how many workers still hold the logger open."""
        with self.var_lock:
            self.log_kill_safe = max(0, self.log_kill_safe - 1)
            self.alive = AliveBit(int(self.alive) & ~int(bit))
            return self.log_kill_safe