"""The APDS9301 light sensor and the worker that reads it."""

from __future__ import annotations

import errno
import signal
import threading
import time
from typing import Callable

from sensorhub.defines import (
    I2C_BUS,
    LUX_SIGNAL,
    SENSOR_OFFLINE,
    SENSOR_ONLINE,
    AliveBit,
    ErrorMode,
    SharedState,
    Source,
)
from sensorhub.i2c import I2CBus, I2CError
from sensorhub.messaging import MessageBus, QueueError

LUX_ADDR = 0x39

LUX_MAX_RETRIES = 10
LUX_NO_RETRY = 0

LUX_STATE_NIGHT = 0x01
LUX_STATE_DAY = 0x02

LUX_NIGHT_LEVEL = 100

CONTROL_REG = 0x00
TIMING_REG = 0x01
THRLOW_LOW_REG = 0x02
THRLOW_HIGH_REG = 0x03
THRHIGH_LOW_REG = 0x04
THRHIGH_HIGH_REG = 0x05
INTRP_CTRL_REG = 0x06
ID_REG = 0x0A
DATA0_LOW = 0x0C
DATA0_HIGH = 0x0D
DATA1_LOW = 0x0E
DATA1_HIGH = 0x0F

RESERVED_REGS = frozenset({0x07, 0x08, 0x09, 0x0B})

INTEGRATION_POS = 0
INTEGRATION_MASK = 3 << INTEGRATION_POS
LOW_INTEGRATION_TIME = 0 << INTEGRATION_POS  # 13.7 ms
MED_INTEGRATION_TIME = 1 << INTEGRATION_POS  # 101 ms
HIGH_INTEGRATION_TIME = 2 << INTEGRATION_POS  # 402 ms

GAIN_POS = 4
GAIN_MASK = 1 << GAIN_POS
HIGH_GAIN_TIMING = HIGH_INTEGRATION_TIME | GAIN_MASK

INTERRUPT_TEST_DATA = 0x1F
INTERRUPT_CONTROL_MASK = 0x1F

THRLOW_LOW_TEST_DATA = 0x05
THRLOW_HIGH_TEST_DATA = 0x0A
THRHIGH_LOW_TEST_DATA = 0x0F
THRHIGH_HIGH_TEST_DATA = 0xF0

PART_NO = 5
PART_NO_POS = 4
PART_NO_MASK = PART_NO << PART_NO_POS

COMMAND_BIT_POS = 7
COMMAND_REG_MASK = 1 << COMMAND_BIT_POS
COMMAND_ADDRESS_MASK = 0x0F
WORD_MODE_BIT_POS = 5
WORD_MODE_MASK = COMMAND_REG_MASK | (1 << WORD_MODE_BIT_POS)

CONTROL_POWER_ON = 0x03
CONTROL_POS = 0
CONTROL_MASK = CONTROL_POWER_ON << CONTROL_POS


def command_byte(address: int) -> int:
    """Command-register byte selecting a register for a byte transfer."""
    return (address & COMMAND_ADDRESS_MASK) | COMMAND_REG_MASK


def word_command(address: int) -> int:
    """Command-register byte selecting a register for a two-byte transfer."""
    return (address & COMMAND_ADDRESS_MASK) | WORD_MODE_MASK


def compute_lux(ch0: float, ch1: float) -> float:
    """Illuminance from the two channel counts, following the datasheet formula."""
    if ch0 == 0:
        return 0.0
    ratio = ch1 / ch0
    if 0 < ratio <= 0.5:
        return 0.0304 * ch0 - 0.062 * ch0 * ratio ** 1.4
    if 0.5 < ratio <= 0.61:
        return 0.0224 * ch0 - 0.031 * ch1
    if 0.61 < ratio <= 0.80:
        return 0.0128 * ch0 - 0.0153 * ch1
    if 0.80 < ratio <= 1.30:
        return 0.00146 * ch0 - 0.00112 * ch1
    return 0.0


def day_state(lux: float) -> int:
    """Classify a light level as night or day."""
    return LUX_STATE_NIGHT if lux <= LUX_NIGHT_LEVEL else LUX_STATE_DAY


class Apds9301:
    """Register-level access to an APDS9301 over an I2C device."""

    def __init__(self, device, notify: Callable[[str], None] | None = None):
        self.device = device
        self._notify = notify or (lambda text: None)

    def write_register(self, address: int, value: int) -> None:
        """Write one byte to a register; reserved registers are refused."""
        if address in RESERVED_REGS:
            raise ValueError("Invalid Register Address Supplied (Lux Sensor)")
        self.device.write(bytes([command_byte(address)]))
        self.device.write(bytes([value & 0xFF]))

    def read_register(self, address: int) -> int:
        """Read one byte from a register."""
        self.device.write(bytes([command_byte(address)]))
        return self.device.read(1)[0]

    def write_word(self, address: int, low: int, high: int) -> None:
        """Write two bytes, low then high, starting at a register."""
        self.device.write(bytes([word_command(address)]))
        self.device.write(bytes([low & 0xFF, high & 0xFF]))

    def read_word(self, address: int) -> tuple[int, int]:
        """Read two bytes starting at a register; return (low, high)."""
        self.device.write(bytes([word_command(address)]))
        low, high = self.device.read(2)
        return low, high

    def _power_on(self) -> None:
        self.write_register(CONTROL_REG, CONTROL_POWER_ON)

    def _high_gain(self) -> None:
        self.write_register(TIMING_REG, HIGH_GAIN_TIMING)

    def _check_threshold(self, address: int, low: int, high: int, name: str) -> None:
        self.write_word(address, low, high)
        got_low, got_high = self.read_word(address)
        if got_low != low or got_high != high:
            raise I2CError(
                errno.ENOMSG,
                f"Test: Interrupt Threshold {name} - Got {got_low:x} & {got_high:x} "
                f"Expected {low:x} & {high:x}",
            )
        self._notify(f"Interrupt Threshold {name} Test Completed Successfully")

    def self_test(self) -> None:
        """Exercise the sensor registers; raise I2CError on any mismatch."""
        self._power_on()
        value = self.read_register(CONTROL_REG)
        if value & CONTROL_MASK != CONTROL_POWER_ON:
            raise I2CError(
                errno.ENOMSG,
                f"Test: Power ON - Got {value & CONTROL_MASK:x} Expected {CONTROL_POWER_ON:x}",
            )
        self._notify("Power ON Test Completed Successfully")

        self._high_gain()
        value = self.read_register(TIMING_REG)
        integration = (value & INTEGRATION_MASK) >> INTEGRATION_POS
        gain = (value & GAIN_MASK) >> GAIN_POS
        if integration != HIGH_INTEGRATION_TIME or gain != 1:
            raise I2CError(
                errno.ENOMSG,
                f"Test: Gain and Integration Time - Got {value:x} "
                f"Expected {HIGH_INTEGRATION_TIME | GAIN_MASK:x}",
            )
        self._notify("Gain and Integration Time Test Completed Successfully")

        self.write_register(INTRP_CTRL_REG, INTERRUPT_TEST_DATA)
        value = self.read_register(INTRP_CTRL_REG)
        if value & INTERRUPT_CONTROL_MASK != INTERRUPT_TEST_DATA:
            raise I2CError(
                errno.ENOMSG,
                f"Test: Interrupt Control Register - Got {value & INTERRUPT_CONTROL_MASK:x} "
                f"Expected {INTERRUPT_TEST_DATA:x}",
            )
        self._notify("Interrupt Control Register Test Completed Successfully")
        self.write_register(INTRP_CTRL_REG, 0)

        self._check_threshold(
            THRLOW_LOW_REG, THRLOW_LOW_TEST_DATA, THRLOW_HIGH_TEST_DATA, "TLow"
        )
        self._check_threshold(
            THRHIGH_LOW_REG, THRHIGH_LOW_TEST_DATA, THRHIGH_HIGH_TEST_DATA, "THigh"
        )

        value = self.read_register(ID_REG)
        part = (value & PART_NO_MASK) >> PART_NO_POS
        if part != PART_NO:
            print(f"\nLux ID Register Register Test Failed {value:x}")
            # The ID failure report has always carried the threshold test's wording.
            raise I2CError(
                errno.ENOMSG,
                f"Test: Interrupt Threshold THigh - Got {part:x} Expected {PART_NO:x}",
            )
        self._notify("ID Register Test Succeeded")

    def read_lux(self) -> float:
        """Power the sensor, set high gain and read the light level in lux."""
        # Repeating power-on and timing setup avoids spurious zero readings.
        self._power_on()
        self._high_gain()
        low, high = self.read_word(DATA0_LOW)
        ch0 = float((high << 8) | low)
        low, high = self.read_word(DATA1_LOW)
        ch1 = float((high << 8) | low)
        return compute_lux(ch0, ch1)


class LuxWorker:
    """Reads the light level on each timer tick and answers socket requests."""

    def __init__(
        self,
        bus: MessageBus,
        state: SharedState,
        i2c_factory: Callable[[], object] | None = None,
        poll_interval: float = 0.01,
    ):
        self.bus = bus
        self.state = state
        self.i2c_factory = i2c_factory or (lambda: I2CBus(I2C_BUS, LUX_ADDR))
        self.poll_interval = poll_interval
        self.sensor: Apds9301 | None = None

    def _info(self, text: str) -> None:
        self.bus.send(Source.LUX, Source.LOGGING, "INFO", text)

    def _report(self, text: str, errnum: int = errno.ENOMSG) -> None:
        self.bus.log_error(Source.LUX, text, errnum, ErrorMode.LOGGING_AND_LOCAL)

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
            self._report("Closing the Lux I2C File", exc.errno or errno.EIO)

    def initialize(self) -> bool:
        """Open and self-test the sensor; return True on success."""
        self._info(f"Lux Thread successfully created! TID: {threading.get_native_id()}")
        with self.state.sensor_lock:
            self._release()
            try:
                sensor = Apds9301(self.i2c_factory(), notify=self._info)
            except I2CError as exc:
                self._report_exception(exc)
                self._report("Lux Sensor Initialization... Exiting")
                return False
            self.sensor = sensor
            self._info("Lux Sensor Initiliazed Successfully")
            try:
                sensor.self_test()
            except (I2CError, ValueError) as exc:
                self._report_exception(exc)
                self._report("Lux Sensor Built-in-self-Test... Exiting")
                return False
            self._info("Lux Sensor Built-in-self-Test Passed Successfully")
        self._info("Starting Normal Operation")
        return True

    def _read(self) -> float:
        with self.state.sensor_lock:
            if self.sensor is None:
                raise I2CError(errno.ENODEV, "read(): I2C Bus")
            return self.sensor.read_lux()

    def _measure(self) -> None:
        self.state.flag = 0
        try:
            lux = self._read()
        except (I2CError, ValueError) as exc:
            self._report_exception(exc)
            self._report("Error while Reading Lux")
            self.state.lux_error_retry = LUX_MAX_RETRIES
            self.state.lux_sensor_state = SENSOR_OFFLINE
            return
        self.state.lux_warning = day_state(lux)
        text = f"Lux is *{lux:f}*"
        self._info(text)

        try:
            self.bus.receive(Source.LUX, timeout=0)
        except QueueError:
            return
        self.bus.send(Source.LUX, Source.SOCKET, "INFO", text)

    def _shutdown(self) -> None:
        flag = self.state.flag
        if flag in (signal.SIGUSR1, signal.SIGUSR2):
            self._info("User Signal Passed - Killing Lux Thread")
        else:
            self._report(
                "All Attempts to get the Lux Sensor Online Failed... Killing Lux Thread"
            )
        try:
            self.bus.remove_queue(Source.LUX)
        except QueueError as exc:
            self._report("mq_unlink()", exc.errno or errno.EIO)
        else:
            self._info("Successfully unlinked Lux queue!")
        if flag == signal.SIGUSR1:
            self._info(f"Exit Reason: User Signal 1 Received ({int(flag)})")
        elif flag == signal.SIGUSR2:
            self._info(f"Exit Reason: User Signal 2 Received ({int(flag)})")
        self.state.thread_exited(AliveBit.LUX)
        self._info("Lux Thread has terminated successfully and will now exit")

    def step(self) -> bool:
        """Run one pass of the worker loop; return False once the worker has exited."""
        self.state.mark_alive(AliveBit.LUX)
        state = self.state
        if state.flag == LUX_SIGNAL and state.lux_sensor_state == SENSOR_ONLINE:
            self._measure()
        elif state.flag in (signal.SIGUSR1, signal.SIGUSR2) or (
            state.lux_sensor_state == SENSOR_OFFLINE
            and state.lux_error_retry == LUX_NO_RETRY
        ):
            self._shutdown()
            return False
        return True

    def run(self) -> None:
        """Initialise the sensor, then loop until a signal or a dead sensor stops it."""
        if self.initialize():
            self.state.lux_error_retry = LUX_NO_RETRY
            self.state.lux_sensor_state = SENSOR_ONLINE
        else:
            self._report("Error while Initializing Lux Sensor")
            self.state.lux_error_retry = LUX_MAX_RETRIES
            self.state.lux_sensor_state = SENSOR_OFFLINE
        self.bus.create_queue(Source.LUX)
        while self.step():
            time.sleep(self.poll_interval)