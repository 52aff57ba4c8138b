"""The supervisor: starts the workers, drives the timer and watches their heartbeats."""

from __future__ import annotations

import errno
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Callable, TextIO

from sensorhub.defines import (
    ALIVE_TESTING_INTERVAL,
    COUNTER_THRESHOLD,
    DEFAULT_LOG_FILE,
    LUX_SIGNAL,
    SENSOR_ONLINE,
    SOCKET_OFFLINE,
    SOCKET_ONLINE,
    TEMPERATURE_SIGNAL,
    TIMER_INTERVAL_MS,
    USR_LEDS,
    AliveBit,
    ErrorMode,
    SharedState,
    Source,
    current_time,
)
from sensorhub.gpio import GPIO_ROOT, GpioPin
from sensorhub.logger import LoggingWorker
from sensorhub.lux_sensor import LUX_NO_RETRY, LuxWorker
from sensorhub.messaging import MessageBus
from sensorhub.socket_server import SocketWorker, kill_socket
from sensorhub.temp_sensor import TEMP_NO_RETRY, TempWorker

# Error number reported when a worker missed its heartbeat (ENOMSG on Linux).
_NOT_ALIVE_ERRNUM = 42

_WATCHED = (
    (AliveBit.LOGGING, "Logging"),
    (AliveBit.SOCKET, "Socket"),
    (AliveBit.TEMP, "Temp"),
    (AliveBit.LUX, "Lux"),
)

_EXIT_PATTERNS = (
    (True, False, False, False),
    (False, True, False, False),
    (False, False, True, False),
    (False, False, False, True),
    (True, True, True, True),
)


class _Ticker:
    """Calls a function periodically on a background thread."""

    def __init__(self, callback: Callable[[], None], delay: float, interval: float):
        self._callback = callback
        self._delay = delay
        self._interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        if self._stop.wait(self._delay):
            return
        while True:
            self._callback()
            if self._stop.wait(self._interval):
                return

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()


class Application:
    """Runs the four workers and supervises them until they have all exited."""

    def __init__(
        self,
        log_path=DEFAULT_LOG_FILE,
        *,
        bus: MessageBus | None = None,
        state: SharedState | None = None,
        logging_worker=None,
        socket_worker=None,
        temp_worker=None,
        lux_worker=None,
        killer: Callable[[], None] | None = None,
        gpio_root=GPIO_ROOT,
        output: TextIO | None = None,
        startup_delay: float = 2.0,
        alive_interval: float = ALIVE_TESTING_INTERVAL,
        timer_delay: float = 2.0,
        timer_interval: float = TIMER_INTERVAL_MS / 1000,
        animation_delay: float = 1.0,
    ):
        self.log_path = log_path
        self.bus = bus if bus is not None else MessageBus()
        self.state = state if state is not None else SharedState()
        self.logging_worker = logging_worker or LoggingWorker(self.bus, self.state, log_path)
        self.socket_worker = socket_worker or SocketWorker(self.bus, self.state)
        self.temp_worker = temp_worker or TempWorker(self.bus, self.state)
        self.lux_worker = lux_worker or LuxWorker(self.bus, self.state)
        self.killer = killer or (lambda: kill_socket(self.bus))
        self.leds = [GpioPin(port, pin, Path(gpio_root)) for port, pin in USR_LEDS]
        self.startup_delay = startup_delay
        self.alive_interval = alive_interval
        self.timer_delay = timer_delay
        self.timer_interval = timer_interval
        self.animation_delay = animation_delay
        self._output = output
        self._sig_sync = False

    def _say(self, text: str) -> None:
        print(text, file=self._output if self._output is not None else sys.stdout)

    def _info(self, text: str) -> None:
        self.bus.send(Source.MAIN, Source.LOGGING, "INFO", text)

    def _kill_socket(self) -> None:
        try:
            self.killer()
        except OSError:
            self._say("\nSocket killing failed")

    def _retry_sensor(self, worker, name: str, retry_attr: str, state_attr: str,
                      no_retry: int) -> None:
        retries = getattr(self.state, retry_attr)
        if retries <= no_retry:
            return
        setattr(self.state, retry_attr, retries - 1)
        self._info(f"Trying to get the {name} Sensor Online...")
        if worker.initialize():
            setattr(self.state, retry_attr, no_retry)
            setattr(self.state, state_attr, SENSOR_ONLINE)
            self._info(f"{name} Sensor is Now Online...")
        else:
            self.bus.log_error(
                Source.MAIN,
                f"Attempt to get the {name} Sensor Online Failed...",
                errno.ENOMSG,
                ErrorMode.LOGGING_AND_LOCAL,
            )

    def on_timer(self) -> None:
        """Handle one timer tick: heartbeat, sensor retries and the next reading."""
        if self.state.socket_state == SOCKET_ONLINE:
            self.state.mark_alive(AliveBit.SOCKET)

        self.state.counter += 1
        if self.state.counter == COUNTER_THRESHOLD:
            self.state.counter = 0
            self._retry_sensor(
                self.temp_worker, "Temperature", "temp_error_retry",
                "temp_sensor_state", TEMP_NO_RETRY,
            )
            self._retry_sensor(
                self.lux_worker, "Lux", "lux_error_retry",
                "lux_sensor_state", LUX_NO_RETRY,
            )

        self.state.flag = LUX_SIGNAL if self._sig_sync else TEMPERATURE_SIGNAL
        self._sig_sync = not self._sig_sync

    def on_user_signal(self, signum: int) -> None:
        """Ask every worker to stop after a user signal."""
        self.state.flag = signum
        self.state.socket_state = SOCKET_OFFLINE
        self._kill_socket()

    def check_alive(self) -> AliveBit:
        """Collect and report the heartbeats since the last check; return them."""
        current = self.state.take_alive()
        for led, (bit, name) in zip(self.leds, _WATCHED):
            if current & bit:
                if self.state.log_kill_safe == 0:
                    self._say(f"[{current_time():.6f}] Main pThread(INFO): {name} pThread is alive\n")
                else:
                    self._info(f"{name} pThread is alive")
                continue
            if bit == AliveBit.LOGGING or self.state.log_kill_safe == 0:
                mode = ErrorMode.LOCAL_ONLY
            else:
                mode = ErrorMode.LOGGING_AND_LOCAL
            self.bus.log_error(Source.MAIN, f"{name} pThread is not alive", _NOT_ALIVE_ERRNUM, mode)
            led.set_value(True)

        # With the temperature and light workers gone, the socket worker goes too.
        if self.state.log_kill_safe <= 1:
            self.state.socket_state = SOCKET_OFFLINE
            self._kill_socket()
        return current

    def _start(self, worker, name: str, mode: ErrorMode, led: GpioPin):
        thread = threading.Thread(target=worker.run, name=f"{name} worker", daemon=True)
        try:
            thread.start()
        except RuntimeError:
            self.bus.log_error(Source.MAIN, f"{name} thread start", errno.EAGAIN, mode)
            led.set_value(True)
            return None
        self._say(f"[{current_time():.6f}] Main pThread SUCCESS: Created {name} Thread!\n")
        time.sleep(self.startup_delay)
        return thread

    def _install_signals(self) -> dict:
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for signum in (signal.SIGUSR1, signal.SIGUSR2):
            previous[signum] = signal.signal(
                signum, lambda received, _frame: self.on_user_signal(received)
            )
        return previous

    def _exit_animation(self) -> None:
        for pattern in _EXIT_PATTERNS:
            for led, value in zip(self.leds, pattern):
                led.set_value(value)
            time.sleep(self.animation_delay)
        for led in self.leds:
            led.set_value(False)

    def run(self) -> None:
        """Start the workers, supervise them until all have exited, then clean up."""
        for led in self.leds:
            led.export()
        for led in self.leds:
            led.set_value(False)

        starts = (
            (self.logging_worker, "Logging", ErrorMode.LOCAL_ONLY),
            (self.socket_worker, "Socket", ErrorMode.LOGGING_AND_LOCAL),
            (self.temp_worker, "Temp", ErrorMode.LOGGING_AND_LOCAL),
            (self.lux_worker, "Lux", ErrorMode.LOGGING_AND_LOCAL),
        )
        threads = [
            self._start(worker, name, mode, led)
            for (worker, name, mode), led in zip(starts, self.leds)
        ]

        previous = self._install_signals()
        ticker = _Ticker(self.on_timer, self.timer_delay, self.timer_interval)
        ticker.start()
        try:
            while self.state.alive:
                self.check_alive()
                time.sleep(self.alive_interval)
        finally:
            ticker.stop()
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        self._say(f"[{current_time():.6f}] Main pThread(INFO): All Threads were terminated. Exiting...\n")
        for thread in threads:
            if thread is not None:
                thread.join()
        self._exit_animation()


def main(argv=None) -> int:
    """Start the sensor hub, logging to the path given or to the default file."""
    args = sys.argv[1:] if argv is None else list(argv)
    print(f"Starting... PID: {os.getpid()}\n")
    if args:
        log_path = args[0]
        print(f"Chosen log file path: {log_path}")
    else:
        log_path = DEFAULT_LOG_FILE
        print(f"No logfile path chosen. Using default location '{DEFAULT_LOG_FILE}'\n")
    Application(log_path).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())