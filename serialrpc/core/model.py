"""Core data models used across codec, coordinator, receiver, and CLI."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

BAUD_RATES: tuple[int, ...] = (
    300,
    600,
    1200,
    2400,
    4800,
    9600,
    14400,
    19200,
    28800,
    38400,
    57600,
    115200,
)


class Shape(Enum):
    """Argument/value shape tag carried on the wire."""

    VOID = "V"
    INT = "I"
    INT_PAIR = "H"
    STRING = "S"
    FLOAT = "F"

    @classmethod
    def from_tag(cls, tag: str) -> Shape:
        return cls(tag)

    @property
    def arity(self) -> int:
        if self is Shape.VOID:
            return 0
        if self is Shape.INT_PAIR:
            return 2
        return 1

    @property
    def reply_shape(self) -> Shape:
        """Shape of the value returned by an action called with this shape."""
        if self is Shape.INT_PAIR:
            return Shape.INT
        return self


COMMAND_SHAPES = frozenset({Shape.VOID, Shape.INT_PAIR, Shape.STRING, Shape.FLOAT})
RESULT_SHAPES = frozenset({Shape.VOID, Shape.INT, Shape.STRING, Shape.FLOAT})


class FrameKind(Enum):
    COMMAND = "MArC_cmd"
    RESULT = "MArC_res"
    ERROR = "MArC_err"
    NOTICE = "MArC_msg"

    @property
    def preamble(self) -> str:
        return self.value


class LinkState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class _NoValue:
    """Marker for the value of a void result."""

    _instance: _NoValue | None = None

    def __new__(cls) -> _NoValue:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_VALUE"

    def __bool__(self) -> bool:
        return False


NO_VALUE = _NoValue()


@dataclass(frozen=True)
class CommandFrame:
    name: str
    shape: Shape
    args: tuple[Any, ...] = ()


@dataclass(frozen=True)
class ResultFrame:
    shape: Shape
    value: Any = NO_VALUE


@dataclass(frozen=True)
class ErrorFrame:
    action: str
    message: str


@dataclass(frozen=True)
class NoticeFrame:
    message: str


Frame = Union[CommandFrame, ResultFrame, ErrorFrame, NoticeFrame]
ActionHandler = Callable[..., Any]


@dataclass(frozen=True)
class ActionRegistration:
    name: str
    shape: Shape
    handler: ActionHandler


@dataclass(frozen=True)
class Invocation:
    """Outcome of running a peer command against the local registry."""

    name: str
    shape: Shape
    args: tuple[Any, ...]
    value: Any = NO_VALUE
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PortInfo:
    device: str
    description: str
    hwid: str = ""


@dataclass(frozen=True)
class LinkProfile:
    id: str
    name: str
    port: str
    baud_rate: int = 9600
    settle_s: float = 2.0
    read_timeout_s: float = 0.1
    write_timeout_s: float = 1.0
    call_timeout_s: float | None = None
    reply_to_peer: bool = False
