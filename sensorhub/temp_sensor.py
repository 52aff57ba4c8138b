"""The TMP102 temperature sensor and the worker that reads it."""

from __future__ import annotations

import errno
import signal
import threading
import time
from typing import Callable

from sensorhub.defines import (
    I2C_BUS,
    SENSOR_OFFLINE,
    SENSOR_ONLINE,
    TEMPERATURE_SIGNAL,
    AliveBit,
    ErrorMode,
    SharedState,
    Source,
    TemperatureUnit,
)
from sensorhub.i2c import I2CBus, I2CError
from sensorhub.messaging import MessageBus, QueueError

TEMP_ADDR = 0x48

TEMP_NORMAL = 0x00
TEMP_WARNING_HIGH = 0x01
TEMP_WARNING_LOW = 0x02

TEMP_MAX_RETRIES = 10
TEMP_NO_RETRY = 0

DATA_REG = 0x00
CONFIG_REG = 0x01
TLOW_REG = 0x02
THIGH_REG = 0x03

CONFIG_DEFAULT_1 = 0x6080
CONFIG_DEFAULT_2 = 0x60A0

SHUTDOWN_POS = 8
SHUTDOWN_MASK = 1 << SHUTDOWN_POS
WRITE_SHUTDOWN_ON = CONFIG_DEFAULT_1 | SHUTDOWN_MASK
WRITE_SHUTDOWN_OFF = CONFIG_DEFAULT_1 & ~SHUTDOWN_MASK

FAULT_POS = 11
FAULT_MASK = 3 << FAULT_POS
WRITE_FAULT_TEST = CONFIG_DEFAULT_1 | FAULT_MASK

EXTENDED_POS = 4
EXTENDED_MASK = 1 << EXTENDED_POS
WRITE_EXTENDED_SET = CONFIG_DEFAULT_1 | EXTENDED_MASK
WRITE_EXTENDED_CLEAR = CONFIG_DEFAULT_1 & ~EXTENDED_MASK

CONVERSION_POS = 6
CONVERSION_MASK = 3 << CONVERSION_POS
WRITE_CONVERSION_TEST = CONFIG_DEFAULT_1 ^ CONVERSION_MASK

HIGH_THRESHOLD = 30  # degrees C
LOW_THRESHOLD = 20  # degrees C

_UNIT_LETTERS = {
    TemperatureUnit.CELSIUS: "C",
    TemperatureUnit.FAHRENHEIT: "F",
    TemperatureUnit.KELVIN: "K",
}
_UNIT_COMMANDS = {
    "TC": TemperatureUnit.CELSIUS,
    "TF": TemperatureUnit.FAHRENHEIT,
    "TK": TemperatureUnit.KELVIN,
}


def warning_for(celsius: float) -> int:
    """Classify a temperature against the low and high thresholds."""
    if celsius < LOW_THRESHOLD:
        return TEMP_WARNING_LOW
    if celsius > HIGH_THRESHOLD:
        return TEMP_WARNING_HIGH
    return TEMP_NORMAL


def convert(celsius: float, unit: int) -> float:
    """Convert degrees Celsius to the given unit."""
    unit = TemperatureUnit(unit)
    if unit == TemperatureUnit.FAHRENHEIT:
        return celsius * 1.8 + 32
    if unit == TemperatureUnit.KELVIN:
        return celsius + 273.15
    return celsius


def format_temperature(celsius: float, unit: int) -> str:
    """Render a temperature reading in the given unit."""
    unit = TemperatureUnit(unit)
    return f"Temperature is *{convert(celsius, unit):f}* in {_UNIT_LETTERS[unit]}"


def _field(value: int, mask: int, pos: int) -> int:
    return (value & mask) >> pos


class Tmp102:
    """Register-level access to a TMP102 over an I2C device."""

    def __init__(self, device, notify: Callable[[str], None] | None = None):
        self.device = device
        self._notify = notify or (lambda text: None)

    def write_register(self, address: int, value: int) -> None:
        """Write a 16-bit value to a writeable register (1 to 3)."""
        if not 1 <= address <= 3:
            raise ValueError("Invalid Register Address Supplied (Temp Sensor)")
        value &= 0xFFFF
        self.device.write(bytes([address]))
        self.device.write(bytes([address, value >> 8, value & 0xFF]))

    def read_register(self, address: int) -> int:
        """Read a register as a 16-bit value, most significant byte first."""
        self.device.write(bytes([address & 0xFF]))
        high, low = self.device.read(2)
        return (high << 8) | low

    def _configure(self, value: int) -> int:
        self.write_register(CONFIG_REG, value)
        return self.read_register(CONFIG_REG)

    def set_thresholds(self) -> None:
        """Program and verify the high and low alert thresholds."""
        for register, threshold, name in (
            (THIGH_REG, HIGH_THRESHOLD, "THigh"),
            (TLOW_REG, LOW_THRESHOLD, "TLow"),
        ):
            self.write_register(register, threshold << 8)
            if self.read_register(register) >> 8 != threshold:
                raise I2CError(errno.ENOMSG, f"{name} Setup")
            self._notify(f"{name} Set at {threshold} deg C Successfully")

    def self_test(self) -> None:
        """Exercise the configuration register; raise I2CError on any mismatch."""
        config = self.read_register(CONFIG_REG)
        if config not in (CONFIG_DEFAULT_1, CONFIG_DEFAULT_2):
            raise I2CError(
                errno.ENOMSG,
                f"Test: Default Config - Got {config:x} Expected "
                f"{CONFIG_DEFAULT_1:x} or {CONFIG_DEFAULT_2:x}",
            )
        self._notify("Default Temp Config Check Succeeded")

        checks = (
            (WRITE_SHUTDOWN_ON, SHUTDOWN_MASK, SHUTDOWN_POS, 1, "Shutdown Mode", None),
            (WRITE_SHUTDOWN_OFF, SHUTDOWN_MASK, SHUTDOWN_POS, 0, "Shutdown Mode", None),
            (WRITE_FAULT_TEST, FAULT_MASK, FAULT_POS, 3, "Fault Bits",
             "Fault Bits Test Succeeded"),
            (WRITE_EXTENDED_SET, EXTENDED_MASK, EXTENDED_POS, 1, "Extended Mode Set", None),
            (WRITE_EXTENDED_CLEAR, EXTENDED_MASK, EXTENDED_POS, 0, "Extended Mode Clear",
             "Extended Mode Set & Clear Test Succeeded"),
            (WRITE_CONVERSION_TEST, CONVERSION_MASK, CONVERSION_POS, 1, "Conversion Rate",
             "Conversion Rate Test Succeeded"),
        )
        for value, mask, pos, expected, name, success in checks:
            got = _field(self._configure(value), mask, pos)
            if got != expected:
                # The conversion-rate report has always named 0 as the expectation.
                shown = 0 if name == "Conversion Rate" else expected
                raise I2CError(errno.ENOMSG, f"Test: {name} - Got {got:x} Expected {shown}")
            if success:
                self._notify(success)

    def read_celsius(self) -> float:
        """Read the temperature in degrees Celsius."""
        raw = self.read_register(DATA_REG) >> 4
        return raw * 0.0625


class TempWorker:
    """Reads the temperature on each timer tick and answers socket requests."""

    def __init__(
        self,
        bus: MessageBus,
        state: SharedState,
        i2c_factory: Callable[[], object] | None = None,
        poll_interval: float = 0.01,
    ):
        self.bus = bus
        self.state = state
        self.i2c_factory = i2c_factory or (lambda: I2CBus(I2C_BUS, TEMP_ADDR))
        self.poll_interval = poll_interval
        self.sensor: Tmp102 | None = None
        self.unit = TemperatureUnit.CELSIUS

    def _info(self, text: str) -> None:
        self.bus.send(Source.TEMP, Source.LOGGING, "INFO", text)

    def _report(self, text: str, errnum: int = errno.ENOMSG) -> None:
        self.bus.log_error(Source.TEMP, text, errnum, ErrorMode.LOGGING_AND_LOCAL)

    def _report_exception(self, exc: Exception) -> None:
        if isinstance(exc, OSError):
            self._report(exc.strerror or str(exc), exc.errno or errno.EIO)
        else:
            self._report(str(exc), errno.EINVAL)

    def _release(self) -> None:
        if self.sensor is None:
            return
        sensor, self.sensor = self.sensor, None
        try:
            sensor.device.close()
        except OSError as exc:
            self._report("Closing the Temperature I2C File", exc.errno or errno.EIO)

    def initialize(self) -> bool:
        """Open, reset, configure and self-test the sensor; return True on success."""
        self._info(f"Temp Thread successfully created! TID: {threading.get_native_id()}")
        with self.state.sensor_lock:
            self._release()
            try:
                sensor = Tmp102(self.i2c_factory(), notify=self._info)
            except I2CError as exc:
                self._report_exception(exc)
                self._report("Temperature Sensor Initialization... Exiting")
                return False
            self.sensor = sensor
            self._info("Temperature Sensor Initiliazed Successfully")

            steps = (
                (lambda: sensor.write_register(CONFIG_REG, CONFIG_DEFAULT_1),
                 "Temperature Sensor Resetted Successfully",
                 "Temperature Sensor Reset... Exiting"),
                (sensor.set_thresholds,
                 "Temperature Sensor Thresholds Set Successfully",
                 "Temperature Sensor Thresholds... Exiting"),
                (sensor.self_test,
                 "Temperature Sensor Built-in-self-Test Passed Successfully",
                 "Temperature Sensor Built-in-self-Test... Exiting"),
                (lambda: sensor.write_register(CONFIG_REG, CONFIG_DEFAULT_1),
                 "Temperature Sensor Resetted Successfully",
                 "Temperature Sensor Reset... Exiting"),
            )
            for action, succeeded, failed in steps:
                try:
                    action()
                except (I2CError, ValueError) as exc:
                    self._report_exception(exc)
                    self._report(failed)
                    return False
                self._info(succeeded)
        self._info("Starting Normal Operation")
        return True

    def _read(self) -> float:
        with self.state.sensor_lock:
            if self.sensor is None:
                raise I2CError(errno.ENODEV, "read(): I2C Bus")
            return self.sensor.read_celsius()

    def _measure(self) -> None:
        self.state.flag = 0
        try:
            celsius = self._read()
        except I2CError as exc:
            self._report_exception(exc)
            self._report("Error while Reading Temperature")
            self.state.temp_error_retry = TEMP_MAX_RETRIES
            self.state.temp_sensor_state = SENSOR_OFFLINE
            return
        self.state.temp_warning = warning_for(celsius)
        self._info(format_temperature(celsius, self.unit))

        try:
            request = self.bus.receive(Source.TEMP, timeout=0)
        except QueueError:
            return
        unit = _UNIT_COMMANDS.get(request.text)
        if unit is not None:
            self.unit = unit
        self.bus.send(Source.TEMP, Source.SOCKET, "INFO", format_temperature(celsius, self.unit))

    def _shutdown(self) -> None:
        flag = self.state.flag
        user_signal = flag in (signal.SIGUSR1, signal.SIGUSR2)
        if user_signal:
            self._info("User Signal Passed - Killing Temperature Thread")
        else:
            self._report(
                "All Attempts to get the Temperature Sensor Online Failed... "
                "Killing Temperature Thread"
            )
        try:
            self.bus.remove_queue(Source.TEMP)
        except QueueError as exc:
            self._report("mq_unlink()", exc.errno or errno.EIO)
        else:
            self._info("Successfully unlinked Temp queue!")
        if flag == signal.SIGUSR1:
            self._info(f"Exit Reason: User Signal 1 Received ({int(flag)})")
        elif flag == signal.SIGUSR2:
            self._info(f"Exit Reason: User Signal 2 Received ({int(flag)})")
        self.state.thread_exited(AliveBit.TEMP)
        self._info("Temp Thread has terminated successfully and will now exit")

    def step(self) -> bool:
        """Run one pass of the worker loop; return False once the worker has exited."""
        self.state.mark_alive(AliveBit.TEMP)
        state = self.state
        if state.flag == TEMPERATURE_SIGNAL and state.temp_sensor_state == SENSOR_ONLINE:
            self._measure()
        elif state.flag in (signal.SIGUSR1, signal.SIGUSR2) or (
            state.temp_sensor_state == SENSOR_OFFLINE
            and state.temp_error_retry == TEMP_NO_RETRY
        ):
            self._shutdown()
            return False
        return True

    def run(self) -> None:
        """Initialise the sensor, then loop until a signal or a dead sensor stops it."""
        if self.initialize():
            self.state.temp_error_retry = TEMP_NO_RETRY
            self.state.temp_sensor_state = SENSOR_ONLINE
        else:
            self._report("Error while Initializing Temperature Sensor")
            self.state.temp_error_retry = TEMP_MAX_RETRIES
            self.state.temp_sensor_state = SENSOR_OFFLINE
        self.bus.create_queue(Source.TEMP)
        while self.step():
            time.sleep(self.poll_interval)