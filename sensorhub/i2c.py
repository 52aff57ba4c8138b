"""Raw access to a device on an I2C bus through its character device."""

from __future__ import annotations

import errno
import fcntl
import os

from sensorhub.defines import I2C_BUS

# ioctl request that selects the slave address for later reads and writes.
I2C_SLAVE = 0x0703


class I2CError(OSError):
    """An I2C bus operation failed, or a device did not behave as expected."""


class I2CBus:
    """An open I2C character device, optionally bound to a slave address."""

    def __init__(self, path: str = I2C_BUS, address: int | None = None):
        self.path = path
        self.address = address
        try:
            self._fd: int | None = os.open(path, os.O_RDWR)
        except OSError as exc:
            raise I2CError(exc.errno or errno.EIO, "open(): I2C Bus") from exc
        if address is not None:
            try:
                fcntl.ioctl(self._fd, I2C_SLAVE, address)
            except OSError as exc:
                os.close(self._fd)
                self._fd = None
                raise I2CError(exc.errno or errno.EIO, "ioctl(): I2C Bus") from exc

    @property
    def closed(self) -> bool:
        """True once the device has been closed."""
        return self._fd is None

    def _require_fd(self, operation: str) -> int:
        if self._fd is None:
            raise I2CError(errno.EBADF, f"{operation}: I2C Bus")
        return self._fd

    def write(self, data: bytes) -> None:
        """Write all of data in one transfer."""
        fd = self._require_fd("write()")
        payload = bytes(data)
        try:
            written = os.write(fd, payload)
        except OSError as exc:
            raise I2CError(exc.errno or errno.EIO, "write(): I2C Bus") from exc
        if written != len(payload):
            raise I2CError(errno.EIO, "write(): I2C Bus")

    def read(self, count: int) -> bytes:
        """Read exactly count bytes in one transfer."""
        fd = self._require_fd("read()")
        try:
            data = os.read(fd, count)
        except OSError as exc:
            raise I2CError(exc.errno or errno.EIO, "read(): I2C Bus") from exc
        if len(data) != count:
            raise I2CError(errno.EIO, "read(): I2C Bus")
        return data

    def close(self) -> None:
        """Close the device; closing twice does nothing."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            os.close(fd)
        except OSError as exc:
            raise I2CError(exc.errno or errno.EIO, "close(): I2C Bus") from exc

    def __enter__(self) -> I2CBus:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()