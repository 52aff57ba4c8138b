import errno
import io
import os

import pytest

from sensorhub.defines import ErrorMode, Message, Source
from sensorhub.messaging import (
    NO_DESTINATION_LEVEL,
    MessageBus,
    QueueError,
    alive_check,
    alive_check_response,
)


@pytest.fixture
def out():
    return io.StringIO()


@pytest.fixture
def bus(out):
    bus = MessageBus(output=out)
    for source in Source:
        bus.create_queue(source)
    return bus


def test_send_and_receive_round_trip(bus):
    sent = bus.send(Source.TEMP, Source.LOGGING, "INFO", "hello")
    received = bus.receive(Source.LOGGING, timeout=0)
    assert received == sent == Message(Source.TEMP, Source.LOGGING, "INFO", "hello")


def test_messages_arrive_in_order(bus):
    for text in ("a", "b", "c"):
        bus.send(Source.MAIN, Source.SOCKET, "INFO", text)
    assert [bus.receive(Source.SOCKET, timeout=0).text for _ in range(3)] == ["a", "b", "c"]


def test_unknown_destination_goes_to_logger(bus):
    sent = bus.send(Source.LUX, 0, "INFO", "lost")
    received = bus.receive(Source.LOGGING, timeout=0)
    assert received == sent
    assert received.dest == Source.LOGGING
    assert received.level == NO_DESTINATION_LEVEL


def test_send_to_missing_queue_reports_locally(out):
    bus = MessageBus(output=out)
    assert bus.send(Source.MAIN, Source.TEMP, "INFO", "x") is None
    assert "Error in Thread 'Unknown Thread'" in out.getvalue()


def test_receive_nonblocking_empty(bus):
    with pytest.raises(QueueError) as info:
        bus.receive(Source.TEMP, timeout=0)
    assert info.value.errno == errno.EAGAIN


def test_receive_timeout(bus):
    with pytest.raises(QueueError) as info:
        bus.receive(Source.SOCKET, timeout=0.01)
    assert info.value.errno == errno.ETIMEDOUT


def test_remove_queue(bus):
    bus.remove_queue(Source.LUX)
    with pytest.raises(QueueError):
        bus.receive(Source.LUX, timeout=0)
    with pytest.raises(QueueError) as info:
        bus.remove_queue(Source.LUX)
    assert info.value.errno == errno.ENOENT


def test_create_queue_keeps_existing_messages(bus):
    bus.send(Source.MAIN, Source.TEMP, "INFO", "kept")
    bus.create_queue(Source.TEMP)
    assert bus.receive(Source.TEMP, timeout=0).text == "kept"


def test_log_error_local_only(bus, out):
    report = bus.log_error(Source.TEMP, "oops", errno.ENOMSG, ErrorMode.LOCAL_ONLY)
    assert report == f"oops: {os.strerror(errno.ENOMSG)}"
    assert f"Error in Thread 'Temp Thread' => {report}" in out.getvalue()
    with pytest.raises(QueueError):
        bus.receive(Source.LOGGING, timeout=0)


def test_log_error_logging_only(bus, out):
    report = bus.log_error(Source.LUX, "oops", errno.ENOMSG, ErrorMode.LOGGING_ONLY)
    assert out.getvalue() == ""
    assert bus.receive(Source.LOGGING, timeout=0) == Message(
        Source.LUX, Source.LOGGING, "ERROR", report
    )


def test_log_error_logging_and_local(bus, out):
    report = bus.log_error(Source.SOCKET, "oops", errno.ENOMSG, ErrorMode.LOGGING_AND_LOCAL)
    assert report in out.getvalue()
    assert bus.receive(Source.LOGGING, timeout=0).text == report


def test_alive_check_answers_probe(bus):
    probe = Message(Source.MAIN, Source.TEMP, "INFO", "Are you alive?")
    assert alive_check(bus, Source.TEMP, probe) is True
    reply = bus.receive(Source.MAIN, timeout=0)
    assert (reply.source, reply.text) == (Source.TEMP, "Yes, I am alive")


def test_alive_check_ignores_other_messages(bus):
    other = Message(Source.SOCKET, Source.TEMP, "INFO", "Are you alive?")
    assert alive_check(bus, Source.TEMP, other) is False
    with pytest.raises(QueueError):
        bus.receive(Source.MAIN, timeout=0)


def test_alive_check_response_accepts_reply(bus):
    reply = Message(Source.LUX, Source.MAIN, "INFO", "Yes, I am alive")
    assert alive_check_response(bus, Source.LUX, reply) is True
    logged = bus.receive(Source.LOGGING, timeout=0)
    assert logged.text == "Received response from 'Lux Thread': Yes, I am alive"


def test_alive_check_response_rejects_wrong_sender(bus):
    reply = Message(Source.TEMP, Source.MAIN, "INFO", "Yes, I am alive")
    assert alive_check_response(bus, Source.LUX, reply) is False
    logged = bus.receive(Source.LOGGING, timeout=0)
    assert logged.text == "Expected response from 'Lux Thread' but got from '4'???"