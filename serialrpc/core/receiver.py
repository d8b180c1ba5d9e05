"""Inbound frame loop.

Each step reads one preamble line, decodes the frame body and routes it to
one of three sinks: result delivery, action dispatch or notice passthrough.
Decode and dispatch failures go to the error hook and never stop the loop.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum

from serialrpc.core import codec
from serialrpc.core.coordinator import CallCoordinator
from serialrpc.core.errors import (
    ActionExecutionError,
    ActionNotFoundError,
    ProtocolDecodeError,
    SerialRpcError,
    TransportIdleError,
    TransportIOError,
    UnsolicitedReplyError,
)
from serialrpc.core.model import (
    CommandFrame,
    ErrorFrame,
    Frame,
    FrameKind,
    Invocation,
    NoticeFrame,
    ResultFrame,
)
from serialrpc.core.registry import ActionRegistry
from serialrpc.transports.base import Transport

LOGGER = logging.getLogger(__name__)

ErrorHook = Callable[[Exception], None]
NoticeSink = Callable[[str], None]
InvocationSink = Callable[[Invocation], None]


class ReceiveState(Enum):
    IDLE = "idle"
    READ_PREAMBLE = "read_preamble"
    DISPATCH_COMMAND = "dispatch_command"
    DISPATCH_RESULT = "dispatch_result"
    DISPATCH_ERROR = "dispatch_error"
    DISPATCH_NOTICE = "dispatch_notice"
    IGNORE = "ignore"


class _Stopping(Exception):
    pass


class ReceiveLoop:
    def __init__(
        self,
        transport: Transport,
        coordinator: CallCoordinator,
        registry: ActionRegistry,
        *,
        on_error: ErrorHook,
        on_notice: NoticeSink,
        on_invocation: InvocationSink,
        io_error_backoff_s: float = 0.5,
    ) -> None:
        self._transport = transport
        self._coordinator = coordinator
        self._registry = registry
        self._on_error = on_error
        self._on_notice = on_notice
        self._on_invocation = on_invocation
        self._io_error_backoff_s = io_error_backoff_s
        self.state = ReceiveState.IDLE

    def run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                self.step(stop)
            except Exception as exc:
                self._report(exc)
                self.state = ReceiveState.IDLE

    def step(self, stop: threading.Event | None = None) -> ReceiveState:
        """Process at most one frame; returns the dispatch state taken."""
        stop = stop or threading.Event()
        self.state = ReceiveState.IDLE
        try:
            raw = self._transport.read_line()
        except TransportIdleError:
            return ReceiveState.IDLE
        except TransportIOError as exc:
            self._report(exc)
            stop.wait(self._io_error_backoff_s)
            return ReceiveState.IDLE

        self.state = ReceiveState.READ_PREAMBLE
        kind = codec.decode_preamble(codec.text_line(raw))
        if kind is None:
            self.state = ReceiveState.IDLE
            return ReceiveState.IGNORE

        try:
            frame = codec.decode_body(kind, self._body_reader(stop))
        except _Stopping:
            self.state = ReceiveState.IDLE
            return ReceiveState.IDLE
        except (ProtocolDecodeError, TransportIOError) as exc:
            self._report(exc)
            if kind in (FrameKind.RESULT, FrameKind.ERROR):
                self._coordinator.fail(exc)
            self.state = ReceiveState.IDLE
            return ReceiveState.IDLE

        try:
            return self._route(frame)
        finally:
            self.state = ReceiveState.IDLE

    def _body_reader(self, stop: threading.Event) -> codec.LineReader:
        def _read() -> str:
            while True:
                try:
                    return codec.text_line(self._transport.read_line())
                except TransportIdleError:
                    if stop.is_set():
                        raise _Stopping() from None

        return _read

    def _route(self, frame: Frame) -> ReceiveState:
        if isinstance(frame, CommandFrame):
            self.state = ReceiveState.DISPATCH_COMMAND
            self._dispatch_command(frame)
        elif isinstance(frame, (ResultFrame, ErrorFrame)):
            self.state = (
                ReceiveState.DISPATCH_ERROR
                if isinstance(frame, ErrorFrame)
                else ReceiveState.DISPATCH_RESULT
            )
            try:
                self._coordinator.deliver(frame)
            except UnsolicitedReplyError as exc:
                self._report(exc)
        elif isinstance(frame, NoticeFrame):
            self.state = ReceiveState.DISPATCH_NOTICE
            self._on_notice(frame.message)
        return self.state

    def _dispatch_command(self, frame: CommandFrame) -> None:
        try:
            value = self._registry.invoke(frame.name, frame.shape, frame.args)
        except (ActionNotFoundError, ActionExecutionError) as exc:
            self._report(exc)
            invocation = Invocation(name=frame.name, shape=frame.shape, args=frame.args, error=exc)
        else:
            invocation = Invocation(name=frame.name, shape=frame.shape, args=frame.args, value=value)

        try:
            self._on_invocation(invocation)
        except SerialRpcError as exc:
            self._report(exc)

    def _report(self, exc: Exception) -> None:
        try:
            self._on_error(exc)
        except Exception:
            LOGGER.exception("Error hook failed while reporting %r", exc)
