"""Synchronous call API over the asynchronous frame exchange.

The wire carries no call id, so a result can only be matched to its call by
ordering. At most one call is in flight per connection; callers queue on a
first-come-first-served gate.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from serialrpc.core import codec
from serialrpc.core.errors import (
    ActionFailedError,
    CallTimeoutError,
    ConnectionClosedError,
    RemoteExecutionError,
    TransportError,
    UnsolicitedReplyError,
)
from serialrpc.core.model import ErrorFrame, ResultFrame, Shape

LOGGER = logging.getLogger(__name__)

Writer = Callable[[bytes], None]


class AdmissionGate:
    """Single-owner ticket lock granting access in arrival order."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self._closed = False

    @property
    def locked(self) -> bool:
        with self._cond:
            return self._serving != self._next_ticket

    @property
    def queued(self) -> int:
        """Callers waiting behind the current owner."""
        with self._cond:
            return max(self._next_ticket - self._serving - 1, 0)

    def acquire(self) -> None:
        with self._cond:
            if self._closed:
                raise ConnectionClosedError("Connection closed")
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._serving != ticket:
                self._cond.wait()
                if self._closed:
                    raise ConnectionClosedError("Connection closed while waiting to call")

    def release(self) -> None:
        with self._cond:
            self._serving += 1
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


@dataclass
class PendingCall:
    name: str
    request: bytes
    done: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Exception | None = None

    def complete(self, *, value: Any = None, error: Exception | None = None) -> None:
        self.value = value
        self.error = error
        self.done.set()

    def outcome(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


class CallCoordinator:
    def __init__(self, write: Writer) -> None:
        self._write = write
        self._gate = AdmissionGate()
        self._slot_lock = threading.Lock()
        self._pending: PendingCall | None = None
        self._closed_error: Exception | None = None

    @property
    def busy(self) -> bool:
        return self._gate.locked

    @property
    def queued(self) -> int:
        return self._gate.queued

    @property
    def pending(self) -> PendingCall | None:
        with self._slot_lock:
            return self._pending

    def call(
        self,
        name: str,
        shape: Shape,
        args: Sequence[Any] = (),
        *,
        timeout: float | None = None,
    ) -> Any:
        try:
            request = codec.encode_command(name, shape, args)
        except ValueError as exc:
            raise ActionFailedError(f"Cannot encode call to {name}: {exc}") from exc
        self._gate.acquire()
        try:
            pending = PendingCall(name=name, request=request)
            with self._slot_lock:
                if self._closed_error is not None:
                    raise self._closed_error
                self._pending = pending

            try:
                self._write(request)
            except TransportError as exc:
                raise ActionFailedError(f"Executing {name}: {exc}") from exc

            if not pending.done.wait(timeout):
                raise CallTimeoutError(f"No reply to '{name}' within {timeout}s")
            return pending.outcome()
        finally:
            with self._slot_lock:
                self._pending = None
            self._gate.release()

    def deliver(self, frame: ResultFrame | ErrorFrame) -> None:
        """Complete the pending call with a result or error frame."""
        with self._slot_lock:
            pending = self._pending
            if pending is None or pending.done.is_set():
                raise UnsolicitedReplyError(f"Discarding reply with no call pending: {frame!r}")
            if isinstance(frame, ErrorFrame):
                pending.complete(error=RemoteExecutionError(frame.message, action=frame.action))
            else:
                pending.complete(value=frame.value)

    def fail(self, exc: Exception) -> None:
        """Fail the pending call because its reply could not be read."""
        with self._slot_lock:
            pending = self._pending
            if pending is None or pending.done.is_set():
                return
            error = ActionFailedError(f"Reading reply to {pending.name}: {exc}")
            error.__cause__ = exc
            pending.complete(error=error)

    def close(self, error: Exception | None = None) -> None:
        """Fail the pending call and every queued caller."""
        error = error or ConnectionClosedError("Connection closed")
        with self._slot_lock:
            self._closed_error = error
            pending = self._pending
            if pending is not None and not pending.done.is_set():
                LOGGER.debug("Aborting pending call '%s'", pending.name)
                pending.complete(error=error)
        self._gate.close()
