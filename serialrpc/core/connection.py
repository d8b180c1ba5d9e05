"""Connection lifecycle and the blocking call API exposed to applications."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from serialrpc.core import codec
from serialrpc.core.coordinator import CallCoordinator
from serialrpc.core.errors import (
    ActionFailedError,
    ConnectionClosedError,
    PortConnectionError,
)
from serialrpc.core.model import (
    NO_VALUE,
    ActionHandler,
    ActionRegistration,
    ErrorFrame,
    Invocation,
    LinkProfile,
    LinkState,
    ResultFrame,
    Shape,
)
from serialrpc.core.receiver import ErrorHook, InvocationSink, NoticeSink, ReceiveLoop
from serialrpc.core.registry import ActionRegistry
from serialrpc.transports.base import Transport
from serialrpc.transports.serial_port import SerialTransport

LOGGER = logging.getLogger(__name__)

CARD_NAME_ACTION = "GetCardName"


def infer_shape(args: tuple[Any, ...]) -> Shape:
    """Pick the command shape matching a positional argument tuple."""
    if not args:
        return Shape.VOID
    if len(args) == 2 and all(isinstance(a, int) and not isinstance(a, bool) for a in args):
        return Shape.INT_PAIR
    if len(args) == 1 and isinstance(args[0], str):
        return Shape.STRING
    if len(args) == 1 and isinstance(args[0], float):
        return Shape.FLOAT
    kinds = ", ".join(type(a).__name__ for a in args)
    raise TypeError(f"No call shape accepts arguments ({kinds})")


class Connection:
    """A serial link to one peer.

    Outgoing calls block until the peer answers; incoming commands run
    against `registry` on the listener thread. Only one outgoing call is in
    flight at a time and callers are admitted in arrival order.
    """

    def __init__(
        self,
        port: str,
        baud_rate: int = 9600,
        *,
        transport: Transport | None = None,
        registry: ActionRegistry | None = None,
        profile: LinkProfile | None = None,
        on_error: ErrorHook | None = None,
        on_notice: NoticeSink | None = None,
        on_command: InvocationSink | None = None,
    ) -> None:
        self._port = port
        self._baud_rate = baud_rate
        self.profile = profile or LinkProfile(id="adhoc", name=port, port=port, baud_rate=baud_rate)
        self.transport = transport or SerialTransport(
            read_timeout_s=self.profile.read_timeout_s,
            write_timeout_s=self.profile.write_timeout_s,
        )
        self.registry = registry or ActionRegistry()
        self._on_error = on_error
        self._on_notice = on_notice
        self._on_command = on_command

        self._state = LinkState.DISCONNECTED
        self._lifecycle_lock = threading.Lock()
        self._coordinator: CallCoordinator | None = None
        self._stop = threading.Event()
        self._listener: threading.Thread | None = None

    @classmethod
    def from_profile(cls, profile: LinkProfile, **kwargs: Any) -> Connection:
        return cls(profile.port, profile.baud_rate, profile=profile, **kwargs)

    @property
    def port(self) -> str:
        return self._port

    @property
    def baud_rate(self) -> int:
        return self._baud_rate

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is LinkState.CONNECTED

    @property
    def busy(self) -> bool:
        """True while an outgoing call holds the admission gate."""
        coordinator = self._coordinator
        return coordinator is not None and coordinator.busy

    def connect(self) -> None:
        with self._lifecycle_lock:
            if self._state is LinkState.CONNECTED:
                raise PortConnectionError(f"Already connected to {self._port}")

            self.transport.open(self._port, self._baud_rate)
            coordinator = CallCoordinator(self.transport.write)
            loop = ReceiveLoop(
                self.transport,
                coordinator,
                self.registry,
                on_error=self.report_receive_error,
                on_notice=self.handle_notice,
                on_invocation=self.handle_invocation,
            )
            self._stop = threading.Event()
            self._listener = threading.Thread(
                target=loop.run,
                args=(self._stop,),
                name=f"serialrpc-listener-{self._port}",
                daemon=True,
            )
            self._coordinator = coordinator
            self._listener.start()

            # Most boards reset when the port opens.
            if self.profile.settle_s > 0:
                time.sleep(self.profile.settle_s)
            self._state = LinkState.CONNECTED
            LOGGER.debug("Connected to %s at %d baud", self._port, self._baud_rate)

    def disconnect(self) -> None:
        with self._lifecycle_lock:
            if self._coordinator is None and not self.transport.is_open:
                self._state = LinkState.DISCONNECTED
                return

            self._state = LinkState.DISCONNECTED
            if self._coordinator is not None:
                self._coordinator.close(ConnectionClosedError(f"Connection to {self._port} closed"))
            self._stop.set()
            listener = self._listener
            if listener is not None and listener is not threading.current_thread():
                listener.join(timeout=max(self.profile.read_timeout_s * 10, 1.0))
            self._listener = None
            self._coordinator = None
            self.transport.close()
            LOGGER.debug("Disconnected from %s", self._port)

    def __enter__(self) -> Connection:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    def register_action(self, name: str, shape: Shape, handler: ActionHandler) -> ActionRegistration:
        return self.registry.register(name, shape, handler)

    def call(self, name: str, *args: Any, shape: Shape | None = None, timeout: float | None = None) -> Any:
        """Run `name` on the peer and return its result.

        The shape is inferred from `args` unless given: no arguments for a
        void call, two ints, one string or one float. Void calls return None.
        """
        if shape is None:
            shape = infer_shape(args)
        elif shape is Shape.FLOAT:
            args = tuple(float(a) for a in args)

        coordinator = self._coordinator
        if self._state is not LinkState.CONNECTED or coordinator is None:
            raise ActionFailedError(
                f"Not connected to {self._port}. Use connect() before calling '{name}'."
            )
        if self._listener is threading.current_thread():
            raise ActionFailedError(f"Cannot call '{name}' from inside an action handler")

        if timeout is None:
            timeout = self.profile.call_timeout_s
        value = coordinator.call(name, shape, args, timeout=timeout)
        return None if value is NO_VALUE else value

    def card_name(self, *, timeout: float | None = None) -> str:
        """Card name declared by the sketch; empty when it answers void."""
        value = self.call(CARD_NAME_ACTION, "", timeout=timeout)
        return "" if value is None else str(value)

    def report_receive_error(self, exc: Exception) -> None:
        """Receive-side failure hook; override or pass `on_error` to customise."""
        if self._on_error is not None:
            self._on_error(exc)
            return
        LOGGER.error("Error handling peer message: %s", exc)

    def handle_notice(self, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(message)
            return
        LOGGER.info("Peer message: %s", message)

    def handle_invocation(self, invocation: Invocation) -> None:
        if self._on_command is not None:
            self._on_command(invocation)
        if not self.profile.reply_to_peer:
            return
        try:
            payload = codec.encode_frame(reply_frame(invocation))
        except (TypeError, ValueError) as exc:
            error = ErrorFrame(action=invocation.name, message=f"Invalid result: {exc}")
            payload = codec.encode_frame(error)
        self.transport.write(payload)


def reply_frame(invocation: Invocation) -> ResultFrame | ErrorFrame:
    """Frame answering a peer command with its local outcome."""
    if invocation.error is not None:
        return ErrorFrame(action=invocation.name, message=" ".join(str(invocation.error).splitlines()))
    shape = invocation.shape.reply_shape
    if shape is Shape.VOID:
        return ResultFrame(shape=shape)
    return ResultFrame(shape=shape, value=invocation.value)

