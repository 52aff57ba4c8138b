from sensorhub.defines import USR_LEDS
from sensorhub.gpio import GpioPin


def test_absolute_pin_number():
    assert GpioPin(1, 21).number == 53


def test_number_fits_in_a_byte():
    assert all(0 <= GpioPin(port, pin).number < 256 for port in range(10) for pin in range(32))


def test_export_writes_pin_number(tmp_path):
    pin = GpioPin(*USR_LEDS[0], root=tmp_path)
    pin.export()
    assert (tmp_path / "export").read_text() == f"{pin.number}\n"


def test_set_value_high(tmp_path):
    pin = GpioPin(*USR_LEDS[1], root=tmp_path)
    directory = tmp_path / f"gpio{pin.number}"
    directory.mkdir()
    pin.set_value(True)
    assert (directory / "direction").read_text() == "out\n"
    assert (directory / "value").read_text() == "1\n"


def test_set_value_low(tmp_path):
    pin = GpioPin(*USR_LEDS[3], root=tmp_path)
    directory = tmp_path / f"gpio{pin.number}"
    directory.mkdir()
    pin.set_value(True)
    pin.set_value(False)
    assert (directory / "value").read_text() == "0\n"


def test_missing_pin_is_reported(tmp_path, capsys):
    pin = GpioPin(*USR_LEDS[2], root=tmp_path)
    pin.set_value(True)
    err = capsys.readouterr().err
    assert "cannot write" in err
    assert not (tmp_path / f"gpio{pin.number}").exists()