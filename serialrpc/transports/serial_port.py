"""Serial transport implementation using pyserial."""

from __future__ import annotations

import errno

import serial
import serial.tools.list_ports

from serialrpc.core.errors import (
    PortBusyError,
    PortUnavailableError,
    TransportIdleError,
    TransportIOError,
    UnsupportedParametersError,
)
from serialrpc.core.model import BAUD_RATES, PortInfo

_BUSY_ERRNOS = {errno.EBUSY, errno.EAGAIN, errno.EWOULDBLOCK}


def list_ports() -> list[PortInfo]:
    ports = [
        PortInfo(device=info.device, description=info.description, hwid=info.hwid)
        for info in serial.tools.list_ports.comports()
    ]
    return sorted(ports, key=lambda p: p.device)


class SerialTransport:
    def __init__(
        self,
        *,
        read_timeout_s: float = 0.1,
        write_timeout_s: float = 1.0,
        baud_rates: tuple[int, ...] = BAUD_RATES,
    ) -> None:
        self.read_timeout_s = read_timeout_s
        self.write_timeout_s = write_timeout_s
        self.baud_rates = baud_rates
        self._serial: serial.Serial | None = None
        self._partial = b""

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self, port: str, baud_rate: int) -> None:
        if self.is_open:
            raise PortBusyError(f"Transport already holds {self._serial.port}")
        if baud_rate not in self.baud_rates:
            raise UnsupportedParametersError(f"Unsupported baud rate {baud_rate} for {port}")

        try:
            self._serial = serial.Serial(
                port=port,
                baudrate=baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.read_timeout_s,
                write_timeout=self.write_timeout_s,
                exclusive=True,
            )
        except ValueError as exc:
            raise UnsupportedParametersError(f"Port {port} rejected parameters: {exc}") from exc
        except serial.SerialException as exc:
            if getattr(exc, "errno", None) in _BUSY_ERRNOS:
                raise PortBusyError(f"Port {port} is in use: {exc}") from exc
            raise PortUnavailableError(f"Could not open port {port}: {exc}") from exc
        self._partial = b""

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        finally:
            self._serial = None
            self._partial = b""

    def read_line(self) -> bytes:
        if self._serial is None:
            raise TransportIOError("Serial port is not open")
        try:
            chunk = self._serial.readline()
        except (serial.SerialException, OSError) as exc:
            raise TransportIOError(f"Serial read failed: {exc}") from exc

        if not chunk:
            raise TransportIdleError("No data available")
        if not chunk.endswith(b"\n"):
            self._partial += chunk
            raise TransportIdleError("Partial line buffered")

        line = self._partial + chunk
        self._partial = b""
        return line

    def write(self, data: bytes) -> None:
        if self._serial is None:
            raise TransportIOError("Serial port is not open")
        try:
            self._serial.write(data)
            self._serial.flush()
        except (serial.SerialException, OSError) as exc:
            raise TransportIOError(f"Serial write failed: {exc}") from exc
