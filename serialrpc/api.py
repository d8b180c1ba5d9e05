"""Stable public API for building tooling on top of serialrpc.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from serialrpc.core.connection import Connection, infer_shape
from serialrpc.core.errors import (
    ActionExecutionError,
    ActionFailedError,
    ActionNotFoundError,
    CallTimeoutError,
    ConnectionClosedError,
    PortBusyError,
    PortConnectionError,
    PortUnavailableError,
    ProfileLoadError,
    ProfileValidationError,
    ProtocolDecodeError,
    ProtocolError,
    RemoteExecutionError,
    SerialRpcError,
    TransportError,
    TransportIdleError,
    TransportIOError,
    UnsolicitedReplyError,
    UnsupportedParametersError,
)
from serialrpc.core.model import (
    BAUD_RATES,
    NO_VALUE,
    ActionHandler,
    Invocation,
    LinkProfile,
    LinkState,
    PortInfo,
    Shape,
)
from serialrpc.core.profiles import load_profiles
from serialrpc.core.receiver import ErrorHook, InvocationSink, NoticeSink
from serialrpc.core.registry import ActionRegistry
from serialrpc.transports.base import Transport
from serialrpc.transports.serial_port import SerialTransport, list_ports

__all__ = [
    "SerialRpcError",
    "PortConnectionError",
    "PortUnavailableError",
    "PortBusyError",
    "UnsupportedParametersError",
    "ProtocolError",
    "ProtocolDecodeError",
    "UnsolicitedReplyError",
    "ActionNotFoundError",
    "ActionExecutionError",
    "RemoteExecutionError",
    "ActionFailedError",
    "ConnectionClosedError",
    "CallTimeoutError",
    "TransportError",
    "TransportIdleError",
    "TransportIOError",
    "ProfileLoadError",
    "ProfileValidationError",
    "BAUD_RATES",
    "NO_VALUE",
    "Invocation",
    "LinkProfile",
    "LinkState",
    "PortInfo",
    "Shape",
    "ActionRegistry",
    "Connection",
    "SerialTransport",
    "Transport",
    "infer_shape",
    "list_ports",
    "resolve_profile",
    "Client",
]


class Client:
    """Public client for talking to one board.

    A `Client` resolves a link profile (packaged or user-defined), owns the
    underlying `Connection` and forwards the call API. Explicit `port` and
    `baud_rate` override the profile values.
    """

    def __init__(
        self,
        *,
        profile_id: str | None = None,
        port: str | None = None,
        baud_rate: int | None = None,
        transport: Transport | None = None,
        registry: ActionRegistry | None = None,
        on_error: ErrorHook | None = None,
        on_notice: NoticeSink | None = None,
        on_command: InvocationSink | None = None,
    ) -> None:
        self.profile = resolve_profile(profile_id=profile_id, port=port, baud_rate=baud_rate)
        self._connection = Connection.from_profile(
            self.profile,
            transport=transport,
            registry=registry,
            on_error=on_error,
            on_notice=on_notice,
            on_command=on_command,
        )

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def registry(self) -> ActionRegistry:
        return self._connection.registry

    @property
    def state(self) -> LinkState:
        return self._connection.state

    def connect(self) -> None:
        self._connection.connect()

    def disconnect(self) -> None:
        self._connection.disconnect()

    def __enter__(self) -> Client:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    def register_action(self, name: str, shape: Shape, handler: ActionHandler) -> None:
        self._connection.register_action(name, shape, handler)

    def call(self, name: str, *args: Any, shape: Shape | None = None, timeout: float | None = None) -> Any:
        return self._connection.call(name, *args, shape=shape, timeout=timeout)

    def card_name(self, *, timeout: float | None = None) -> str:
        return self._connection.card_name(timeout=timeout)


def resolve_profile(
    *,
    profile_id: str | None = None,
    port: str | None = None,
    baud_rate: int | None = None,
) -> LinkProfile:
    """Pick a profile by id, or build an ad-hoc one from `port`."""
    if profile_id is None:
        if port is None:
            raise PortConnectionError("Either a profile or a port is required.")
        rate = baud_rate or 9600
        if rate not in BAUD_RATES:
            raise UnsupportedParametersError(f"Unsupported baud rate {rate}")
        return LinkProfile(id="adhoc", name=port, port=port, baud_rate=rate)

    loaded = load_profiles()
    profile = loaded.profiles.get(profile_id)
    if profile is None:
        available = ", ".join(sorted(loaded.profiles))
        raise ProfileValidationError(f"Unknown profile '{profile_id}'. Available: {available}")
    if port is None and baud_rate is None:
        return profile
    rate = baud_rate or profile.baud_rate
    if rate not in BAUD_RATES:
        raise UnsupportedParametersError(f"Unsupported baud rate {rate}")
    return replace(profile, port=port or profile.port, baud_rate=rate)
