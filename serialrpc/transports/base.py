"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class Transport(Protocol):
    @property
    def is_open(self) -> bool:
        """True while the port is held."""

    def open(self, port: str, baud_rate: int) -> None:
        """Acquire the port exclusively with the given line speed."""

    def close(self) -> None:
        """Release the port; safe to call when already closed."""

    def read_line(self) -> bytes:
        """Return the next complete line, including its terminator.

        Raises TransportIdleError when nothing arrived yet and
        TransportIOError on a genuine read failure.
        """

    def write(self, data: bytes) -> None:
        """Write all bytes to the peer."""
