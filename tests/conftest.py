from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable, Iterator

import pytest

from serialrpc.core.connection import Connection
from serialrpc.core.errors import TransportIdleError
from serialrpc.core.model import LinkProfile


class ScriptedTransport:
    """In-memory transport: tests feed inbound lines and inspect writes."""

    def __init__(self) -> None:
        self.is_open = False
        self.opened_with: tuple[str, int] | None = None
        self.open_error: Exception | None = None
        self.read_error: Exception | None = None
        self.write_error: Exception | None = None
        self.on_write: Callable[[bytes], None] | None = None
        self.writes: list[bytes] = []
        self._lines: queue.Queue[bytes] = queue.Queue()
        self._cond = threading.Condition()

    def open(self, port: str, baud_rate: int) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.is_open = True
        self.opened_with = (port, baud_rate)

    def close(self) -> None:
        self.is_open = False

    def read_line(self) -> bytes:
        if self.read_error is not None:
            raise self.read_error
        try:
            return self._lines.get(timeout=0.01)
        except queue.Empty:
            raise TransportIdleError("No data available") from None

    def write(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        with self._cond:
            self.writes.append(data)
            self._cond.notify_all()
        if self.on_write is not None:
            self.on_write(data)

    def feed(self, data: str | bytes) -> None:
        if isinstance(data, str):
            data = data.encode("ascii")
        for line in data.splitlines(keepends=True):
            self._lines.put(line)

    def reply_to(self, request: bytes, response: str) -> None:
        """Answer `request` with `response` as soon as it is written."""
        previous = self.on_write

        def _respond(data: bytes) -> None:
            if data == request:
                self.feed(response)
            elif previous is not None:
                previous(data)

        self.on_write = _respond

    def wait_for_writes(self, count: int, timeout: float = 2.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.writes) >= count, timeout=timeout)


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def profile() -> LinkProfile:
    return LinkProfile(id="test", name="Test board", port="/dev/fake0", baud_rate=9600, settle_s=0.0)


@pytest.fixture
def connection(transport: ScriptedTransport, profile: LinkProfile) -> Iterator[Connection]:
    conn = Connection.from_profile(profile, transport=transport)
    conn.connect()
    try:
        yield conn
    finally:
        conn.disconnect()


@pytest.fixture
def wait_until() -> Callable[[Callable[[], bool]], bool]:
    return _wait_until
