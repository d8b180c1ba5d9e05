"""Line-oriented wire codec.

Outbound commands are a single line::

    <name> <tag>[<value>|<v1>,<v2>]

Inbound frames start with a preamble line selecting the frame kind, followed
by body lines:

- command: name, tag, then zero to two argument lines
- result: tag, then the value line unless the tag is void
- error: failed action name, message
- notice: message
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from serialrpc.core.errors import ProtocolDecodeError
from serialrpc.core.model import (
    COMMAND_SHAPES,
    NO_VALUE,
    RESULT_SHAPES,
    CommandFrame,
    ErrorFrame,
    Frame,
    FrameKind,
    NoticeFrame,
    ResultFrame,
    Shape,
)

LOGGER = logging.getLogger(__name__)

LineReader = Callable[[], str]

_PREAMBLES = {kind.preamble: kind for kind in FrameKind}


def text_line(raw: bytes | str) -> str:
    """Decode a raw wire line and drop its terminator."""
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="replace")
    if raw.endswith("\r\n"):
        return raw[:-2]
    if raw.endswith("\n") or raw.endswith("\r"):
        return raw[:-1]
    return raw


def _single_line(text: str, what: str) -> str:
    if "\n" in text or "\r" in text:
        raise ValueError(f"{what} contains a line break")
    return text


def _format_value(shape: Shape, value: Any) -> str:
    if shape is Shape.STRING:
        return _single_line(str(value), "String value")
    if shape is Shape.FLOAT:
        return repr(float(value))
    if shape is Shape.INT:
        return str(int(value))
    return str(value)


def _format_args(shape: Shape, args: Sequence[Any]) -> str:
    if len(args) != shape.arity:
        raise ValueError(f"Shape {shape.name} takes {shape.arity} argument(s), got {len(args)}")
    if shape is Shape.VOID:
        return ""
    if shape is Shape.INT_PAIR:
        return f"{int(args[0])},{int(args[1])}"
    return _format_value(shape, args[0])


def encode_command(name: str, shape: Shape, args: Sequence[Any] = ()) -> bytes:
    """Encode an outbound call as a single line.

    Names are not escaped. String values must be single-line ASCII;
    anything else raises ValueError.
    """
    if shape not in COMMAND_SHAPES:
        raise ValueError(f"Shape {shape.name} cannot be used for a command")
    return f"{name.strip()} {shape.value}{_format_args(shape, args)}\n".encode("ascii")


def encode_frame(frame: Frame) -> bytes:
    """Encode a frame in the multi-line layout the peer sends."""
    if isinstance(frame, CommandFrame):
        if frame.shape not in COMMAND_SHAPES:
            raise ValueError(f"Shape {frame.shape.name} cannot be used for a command")
        if len(frame.args) != frame.shape.arity:
            raise ValueError(
                f"Shape {frame.shape.name} takes {frame.shape.arity} argument(s), got {len(frame.args)}"
            )
        lines = [FrameKind.COMMAND.preamble, frame.name.strip(), frame.shape.value]
        if frame.shape is Shape.INT_PAIR:
            lines.extend(str(int(arg)) for arg in frame.args)
        elif frame.shape is not Shape.VOID:
            lines.append(_format_value(frame.shape, frame.args[0]))
    elif isinstance(frame, ResultFrame):
        if frame.shape not in RESULT_SHAPES:
            raise ValueError(f"Shape {frame.shape.name} cannot be used for a result")
        lines = [FrameKind.RESULT.preamble, frame.shape.value]
        if frame.shape is not Shape.VOID:
            lines.append(_format_value(frame.shape, frame.value))
    elif isinstance(frame, ErrorFrame):
        lines = [
            FrameKind.ERROR.preamble,
            frame.action,
            _single_line(frame.message, "Error message"),
        ]
    elif isinstance(frame, NoticeFrame):
        lines = [FrameKind.NOTICE.preamble, _single_line(frame.message, "Notice")]
    else:
        raise TypeError(f"Not a frame: {frame!r}")
    return "".join(f"{line}\n" for line in lines).encode("ascii")


def decode_preamble(line: str) -> FrameKind | None:
    token = line.strip()
    kind = _PREAMBLES.get(token)
    if kind is None and token:
        LOGGER.debug("Ignoring fragmented frame: %r", token)
    return kind


def _read_tag(read_line: LineReader, allowed: frozenset[Shape], context: str) -> Shape:
    raw = read_line().strip()
    try:
        shape = Shape.from_tag(raw[:1])
    except ValueError:
        raise ProtocolDecodeError(f"{context}: unsupported shape tag {raw!r}") from None
    if shape not in allowed:
        raise ProtocolDecodeError(f"{context}: unsupported shape tag {raw!r}")
    return shape


def _parse_int(raw: str, context: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ProtocolDecodeError(f"{context}: expected integer, got {raw!r}") from exc


def _parse_float(raw: str, context: str) -> float:
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ProtocolDecodeError(f"{context}: expected float, got {raw!r}") from exc


def decode_command_body(read_line: LineReader) -> CommandFrame:
    name = read_line().strip()
    context = f"Command {name!r}"
    shape = _read_tag(read_line, COMMAND_SHAPES, context)
    if shape is Shape.VOID:
        args: tuple[Any, ...] = ()
    elif shape is Shape.INT_PAIR:
        first = _parse_int(read_line(), context)
        second = _parse_int(read_line(), context)
        args = (first, second)
    elif shape is Shape.FLOAT:
        args = (_parse_float(read_line(), context),)
    else:
        args = (read_line(),)
    return CommandFrame(name=name, shape=shape, args=args)


def decode_result_body(read_line: LineReader) -> ResultFrame:
    shape = _read_tag(read_line, RESULT_SHAPES, "Result")
    if shape is Shape.VOID:
        return ResultFrame(shape=shape, value=NO_VALUE)
    if shape is Shape.INT:
        return ResultFrame(shape=shape, value=_parse_int(read_line(), "Result"))
    if shape is Shape.FLOAT:
        return ResultFrame(shape=shape, value=_parse_float(read_line(), "Result"))
    return ResultFrame(shape=shape, value=read_line())


def decode_error_body(read_line: LineReader) -> ErrorFrame:
    action = read_line().strip()
    message = read_line()
    return ErrorFrame(action=action, message=message)


def decode_notice_body(read_line: LineReader) -> NoticeFrame:
    return NoticeFrame(message=read_line())


_BODY_DECODERS: dict[FrameKind, Callable[[LineReader], Frame]] = {
    FrameKind.COMMAND: decode_command_body,
    FrameKind.RESULT: decode_result_body,
    FrameKind.ERROR: decode_error_body,
    FrameKind.NOTICE: decode_notice_body,
}


def decode_body(kind: FrameKind, read_line: LineReader) -> Frame:
    return _BODY_DECODERS[kind](read_line)


def decode_frame(read_line: LineReader) -> Frame | None:
    """Read one frame; returns None when the preamble line is ignored."""
    kind = decode_preamble(read_line())
    if kind is None:
        return None
    return decode_body(kind, read_line)


def iter_lines(data: bytes) -> LineReader:
    """Build a line reader over an encoded buffer."""
    lines = iter(data.decode("ascii").splitlines())

    def _next() -> str:
        try:
            return next(lines)
        except StopIteration:
            raise ProtocolDecodeError("Unexpected end of frame") from None

    return _next
