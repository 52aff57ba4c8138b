import errno

import pytest

from sensorhub.i2c import I2CBus, I2CError


@pytest.fixture
def device(tmp_path):
    path = tmp_path / "i2c-dev"
    path.write_bytes(b"")
    return path


def test_written_bytes_can_be_read_back(device):
    with I2CBus(str(device)) as writer:
        writer.write(b"\x01\x60\x80")
    with I2CBus(str(device)) as reader:
        assert reader.read(3) == b"\x01\x60\x80"


def test_short_read_raises(device):
    device.write_bytes(b"\x01")
    with I2CBus(str(device)) as bus:
        with pytest.raises(I2CError) as info:
            bus.read(2)
    assert info.value.errno == errno.EIO
    assert info.value.strerror == "read(): I2C Bus"


def test_missing_device_raises_open_error(tmp_path):
    with pytest.raises(I2CError) as info:
        I2CBus(str(tmp_path / "absent"))
    assert info.value.errno == errno.ENOENT
    assert info.value.strerror == "open(): I2C Bus"


def test_slave_address_on_plain_file_fails(device):
    with pytest.raises(I2CError) as info:
        I2CBus(str(device), address=0x48)
    assert info.value.strerror == "ioctl(): I2C Bus"


def test_write_after_close_raises(device):
    bus = I2CBus(str(device))
    bus.close()
    bus.close()
    assert bus.closed
    with pytest.raises(I2CError) as info:
        bus.write(b"\x00")
    assert info.value.errno == errno.EBADF


def test_context_manager_closes(device):
    with I2CBus(str(device)) as bus:
        assert not bus.closed
    assert bus.closed


def test_error_is_an_os_error(tmp_path):
    with pytest.raises(OSError) as info:
        I2CBus(str(tmp_path / "absent"))
    assert info.value.errno == errno.ENOENT