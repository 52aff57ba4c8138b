import io
import signal

import pytest

from sensorhub.app import Application
from sensorhub.defines import (
    COUNTER_THRESHOLD,
    LUX_SIGNAL,
    SENSOR_OFFLINE,
    SENSOR_ONLINE,
    SOCKET_OFFLINE,
    SOCKET_ONLINE,
    TEMPERATURE_SIGNAL,
    USR_LEDS,
    AliveBit,
    SharedState,
    Source,
)
from sensorhub.gpio import GpioPin
from sensorhub.messaging import MessageBus, QueueError


class FakeWorker:
    def __init__(self, succeed=True, state=None, bit=None):
        self.succeed = succeed
        self.initialized = 0
        self.ran = 0
        self.state = state
        self.bit = bit

    def initialize(self):
        self.initialized += 1
        return self.succeed

    def run(self):
        self.ran += 1
        if self.state is not None and self.bit is not None and self.ran == 1:
            self.state.mark_alive(self.bit)


class Killer:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def __call__(self):
        self.calls += 1
        if self.fail:
            raise ConnectionRefusedError(111, "refused")


@pytest.fixture
def gpio_root(tmp_path):
    for port, pin in USR_LEDS:
        (tmp_path / f"gpio{GpioPin(port, pin, tmp_path).number}").mkdir()
    return tmp_path


def make_app(gpio_root, **overrides):
    bus = overrides.pop("bus", MessageBus(output=io.StringIO(), maxsize=0))
    state = overrides.pop("state", SharedState())
    options = dict(
        bus=bus,
        state=state,
        logging_worker=FakeWorker(),
        socket_worker=FakeWorker(),
        temp_worker=FakeWorker(),
        lux_worker=FakeWorker(),
        killer=Killer(),
        gpio_root=gpio_root,
        output=io.StringIO(),
        startup_delay=0,
        alive_interval=0,
        timer_delay=60,
        animation_delay=0,
    )
    options.update(overrides)
    return Application("unused.log", **options)


def led_value(app, index, root):
    return (root / f"gpio{app.leds[index].number}" / "value").read_text()


def drain(bus, dest):
    texts = []
    while True:
        try:
            texts.append(bus.receive(dest, timeout=0).text)
        except QueueError:
            return texts


def test_timer_alternates_readings(gpio_root):
    app = make_app(gpio_root)
    app.on_timer()
    assert app.state.flag == TEMPERATURE_SIGNAL
    app.on_timer()
    assert app.state.flag == LUX_SIGNAL
    app.on_timer()
    assert app.state.flag == TEMPERATURE_SIGNAL


def test_timer_marks_online_socket_alive(gpio_root):
    app = make_app(gpio_root)
    app.state.socket_state = SOCKET_ONLINE
    app.on_timer()
    assert app.state.take_alive() == AliveBit.SOCKET


def test_timer_leaves_offline_socket_unmarked(gpio_root):
    app = make_app(gpio_root)
    app.on_timer()
    assert app.state.alive == AliveBit.NONE


def test_timer_retries_sensors_at_threshold(gpio_root):
    temp = FakeWorker(succeed=True)
    lux = FakeWorker(succeed=False)
    app = make_app(gpio_root, temp_worker=temp, lux_worker=lux)
    app.state.temp_error_retry = 3
    app.state.lux_error_retry = 3
    for _ in range(COUNTER_THRESHOLD - 1):
        app.on_timer()
    assert temp.initialized == 0
    app.on_timer()
    assert app.state.counter == 0
    assert temp.initialized == 1
    assert app.state.temp_error_retry == 0
    assert app.state.temp_sensor_state == SENSOR_ONLINE
    assert lux.initialized == 1
    assert app.state.lux_error_retry == 2
    assert app.state.lux_sensor_state == SENSOR_OFFLINE


def test_timer_skips_sensors_without_retries(gpio_root):
    temp = FakeWorker()
    app = make_app(gpio_root, temp_worker=temp)
    for _ in range(COUNTER_THRESHOLD):
        app.on_timer()
    assert temp.initialized == 0


def test_user_signal_stops_everything(gpio_root):
    killer = Killer()
    app = make_app(gpio_root, killer=killer)
    app.state.socket_state = SOCKET_ONLINE
    app.on_user_signal(signal.SIGUSR1)
    assert app.state.flag == signal.SIGUSR1
    assert app.state.socket_state == SOCKET_OFFLINE
    assert killer.calls == 1


def test_user_signal_reports_kill_failure(gpio_root):
    output = io.StringIO()
    app = make_app(gpio_root, killer=Killer(fail=True), output=output)
    app.on_user_signal(signal.SIGUSR2)
    assert "Socket killing failed" in output.getvalue()


def test_check_alive_reports_to_logger(gpio_root):
    app = make_app(gpio_root)
    app.bus.create_queue(Source.LOGGING)
    app.state.alive = AliveBit.LOGGING | AliveBit.SOCKET | AliveBit.TEMP | AliveBit.LUX
    seen = app.check_alive()
    assert seen == AliveBit.LOGGING | AliveBit.SOCKET | AliveBit.TEMP | AliveBit.LUX
    assert app.state.alive == AliveBit.NONE
    assert drain(app.bus, Source.LOGGING) == [
        "Logging pThread is alive",
        "Socket pThread is alive",
        "Temp pThread is alive",
        "Lux pThread is alive",
    ]
    assert app.killer.calls == 0


def test_check_alive_lights_leds_for_missing_workers(gpio_root):
    app = make_app(gpio_root)
    app.bus.create_queue(Source.LOGGING)
    app.state.alive = AliveBit.LOGGING
    app.check_alive()
    assert led_value(app, 1, gpio_root) == "1\n"
    assert led_value(app, 2, gpio_root) == "1\n"
    assert led_value(app, 3, gpio_root) == "1\n"
    assert not (gpio_root / f"gpio{app.leds[0].number}" / "value").exists()
    errors = drain(app.bus, Source.LOGGING)
    assert any(text.startswith("Lux pThread is not alive") for text in errors)


def test_check_alive_prints_when_logger_gone(gpio_root):
    output = io.StringIO()
    app = make_app(gpio_root, output=output)
    app.state.log_kill_safe = 0
    app.state.alive = AliveBit.LUX
    app.check_alive()
    assert "Main pThread(INFO): Lux pThread is alive" in output.getvalue()


def test_check_alive_kills_socket_when_sensors_gone(gpio_root):
    killer = Killer()
    app = make_app(gpio_root, killer=killer)
    app.state.log_kill_safe = 1
    app.state.socket_state = SOCKET_ONLINE
    app.check_alive()
    assert killer.calls == 1
    assert app.state.socket_state == SOCKET_OFFLINE


def test_run_starts_workers_and_finishes(gpio_root):
    state = SharedState()
    workers = [FakeWorker(state=state, bit=AliveBit.TEMP) for _ in range(4)]
    output = io.StringIO()
    app = make_app(
        gpio_root,
        state=state,
        logging_worker=workers[0],
        socket_worker=workers[1],
        temp_worker=workers[2],
        lux_worker=workers[3],
        output=output,
    )
    app.run()
    assert [worker.ran for worker in workers] == [1, 1, 1, 1]
    assert "All Threads were terminated. Exiting..." in output.getvalue()
    assert all(led_value(app, index, gpio_root) == "0\n" for index in range(4))
    assert (gpio_root / "export").read_text().split() == [
        str(led.number) for led in app.leds
    ][-1:]