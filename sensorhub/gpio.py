"""Control of output pins through the sysfs GPIO interface."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

GPIO_ROOT = Path("/sys/class/gpio")


@dataclass(frozen=True)
class GpioPin:
    """An output pin identified by GPIO port and pin number."""

    port: int
    pin: int
    root: Path = GPIO_ROOT

    @property
    def number(self) -> int:
        """Absolute pin number, as an 8-bit value."""
        return (32 * self.port + self.pin) & 0xFF

    def export(self) -> None:
        """Make the pin available in sysfs."""
        self._write(Path(self.root) / "export", str(self.number))

    def set_value(self, value: bool) -> None:
        """Configure the pin as output and drive it high or low."""
        directory = Path(self.root) / f"gpio{self.number}"
        self._write(directory / "direction", "out")
        self._write(directory / "value", "1" if value else "0")

    @staticmethod
    def _write(path: Path, text: str) -> None:
        # Failures are reported but never stop the caller.
        try:
            path.write_text(text + "\n")
        except OSError as exc:
            print(f"gpio: cannot write {path}: {exc.strerror}", file=sys.stderr)