import io
import threading
import time

import pytest

from sensorhub.defines import AliveBit, Message, SharedState, Source
from sensorhub.logger import LoggingWorker, format_entry, init_log_file, log_message
from sensorhub.messaging import MessageBus, QueueError


def test_init_log_file_truncates_and_writes_header(tmp_path):
    path = tmp_path / "log.txt"
    path.write_text("old content\n")
    header = init_log_file(path, 4321)
    content = path.read_text()
    assert content == header
    assert "old content" not in content
    assert "Logfile successfully created! TID: 4321" in content.splitlines()[0]
    assert content.endswith("***************************************\n\n")


def test_init_log_file_echoes_to_stdout(tmp_path, capsys):
    header = init_log_file(tmp_path / "log.txt", 7)
    assert capsys.readouterr().out == header


def test_init_log_file_missing_directory_raises(tmp_path):
    with pytest.raises(OSError):
        init_log_file(tmp_path / "missing" / "log.txt", 1)


def test_format_entry_known_destination():
    message = Message(Source.TEMP, Source.LOGGING, "INFO", "hello")
    assert format_entry(message, 1.5) == (
        "[1.500000] Logging Thread(INFO): hello\n\t\tL-> Source: 'Temp Thread'\n\n"
    )


@pytest.mark.parametrize(
    "dest, name",
    [
        (Source.MAIN, "Main Thread"),
        (Source.SOCKET, "Socket Thread"),
        (Source.LUX, "Lux Thread"),
    ],
)
def test_format_entry_uses_destination_name(dest, name):
    entry = format_entry(Message(Source.MAIN, dest, "ERROR", "x"), 0.0)
    assert entry.startswith(f"[0.000000] {name}(ERROR): x")


def test_format_entry_unknown_source_and_destination():
    entry = format_entry(Message(42, 9, "INFO", "lost"), 2.0)
    assert "Unknown Thread '9'" in entry
    assert "Source: 'Unknown Thread'" in entry
    assert "lost" in entry


def test_log_message_appends(tmp_path):
    path = tmp_path / "log.txt"
    init_log_file(path, 1)
    first = log_message(path, Message(Source.LUX, Source.LOGGING, "INFO", "one"))
    second = log_message(path, Message(Source.TEMP, Source.LOGGING, "WARNING", "two"))
    content = path.read_text()
    assert content.endswith(first + second)
    assert content.index("one") < content.index("two")


def test_log_message_failure_returns_none(tmp_path, capsys):
    result = log_message(tmp_path, Message(Source.TEMP, Source.LOGGING, "INFO", "data"))
    assert result is None
    out = capsys.readouterr().out
    assert "Could not open log file" in out
    assert "Message: data" in out


def test_worker_logs_until_released(tmp_path):
    path = tmp_path / "log.txt"
    bus = MessageBus(output=io.StringIO(), maxsize=0)
    state = SharedState(log_kill_safe=1)
    bus.create_queue(Source.LOGGING)
    bus.send(Source.TEMP, Source.LOGGING, "INFO", "first entry")
    bus.send(Source.LUX, Source.LOGGING, "INFO", "second entry")

    worker = LoggingWorker(bus, state, path, poll_interval=0.05)
    thread = threading.Thread(target=worker.run)
    thread.start()

    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if path.exists() and "second entry" in path.read_text():
            break
        time.sleep(0.02)
    state.log_kill_safe = 0
    thread.join(timeout=5)

    assert not thread.is_alive()
    content = path.read_text()
    assert "first entry" in content and "second entry" in content
    assert not (state.alive & AliveBit.LOGGING)
    with pytest.raises(QueueError):
        bus.receive(Source.LOGGING, timeout=0)