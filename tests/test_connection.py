from __future__ import annotations

import logging
import threading
from dataclasses import replace

import pytest

from serialrpc.core.connection import Connection, infer_shape, reply_frame
from serialrpc.core.errors import (
    ActionExecutionError,
    ActionFailedError,
    ActionNotFoundError,
    CallTimeoutError,
    ConnectionClosedError,
    PortBusyError,
    PortConnectionError,
    RemoteExecutionError,
    UnsolicitedReplyError,
)
from serialrpc.core.model import ErrorFrame, Invocation, LinkState, ResultFrame, Shape


def test_connect_opens_transport_with_port_and_baud(connection, transport) -> None:
    assert connection.state is LinkState.CONNECTED
    assert transport.opened_with == ("/dev/fake0", 9600)


def test_ping_returns_and_frees_gate(connection, transport) -> None:
    transport.reply_to(b"Ping V\n", "MArC_res\nV\n")

    assert connection.call("Ping") is None
    assert not connection.busy
    assert transport.writes == [b"Ping V\n"]


def test_boom_raises_remote_execution_error(connection, transport) -> None:
    transport.reply_to(b"Boom V\n", "MArC_err\nBoom\nbad state\n")

    with pytest.raises(RemoteExecutionError) as exc:
        connection.call("Boom")

    assert str(exc.value) == "bad state"
    assert exc.value.action == "Boom"
    assert not connection.busy


def test_call_shapes_are_inferred(connection, transport) -> None:
    transport.reply_to(b"Add H2,3\n", "MArC_res\nI\n5\n")
    transport.reply_to(b"Echo Shello\n", "MArC_res\nS\nHELLO\n")
    transport.reply_to(b"Half F3.0\n", "MArC_res\nF\n1.5\n")

    assert connection.call("Add", 2, 3) == 5
    assert connection.call("Echo", "hello") == "HELLO"
    assert connection.call("Half", 3.0) == 1.5


def test_explicit_float_shape_accepts_int(connection, transport) -> None:
    transport.reply_to(b"Half F4.0\n", "MArC_res\nF\n2.0\n")
    assert connection.call("Half", 4, shape=Shape.FLOAT) == 2.0


def test_card_name(connection, transport) -> None:
    transport.reply_to(b"GetCardName S\n", "MArC_res\nS\nFull Tutorial Sketch\n")
    assert connection.card_name() == "Full Tutorial Sketch"


def test_infer_shape_rejects_unsupported_arguments() -> None:
    assert infer_shape(()) is Shape.VOID
    with pytest.raises(TypeError):
        infer_shape((1,))
    with pytest.raises(TypeError):
        infer_shape((True, 2))
    with pytest.raises(TypeError):
        infer_shape(("a", "b"))


def test_call_before_connect_fails(transport, profile) -> None:
    conn = Connection.from_profile(profile, transport=transport)
    with pytest.raises(ActionFailedError):
        conn.call("Ping")
    assert transport.writes == []


def test_connect_twice_fails(connection) -> None:
    with pytest.raises(PortConnectionError):
        connection.connect()


def test_open_failure_leaves_connection_disconnected(transport, profile) -> None:
    transport.open_error = PortBusyError("Port /dev/fake0 is in use")
    conn = Connection.from_profile(profile, transport=transport)

    with pytest.raises(PortBusyError):
        conn.connect()
    assert conn.state is LinkState.DISCONNECTED


def test_disconnect_completes_in_flight_call(connection, transport) -> None:
    outcome: dict = {}

    def _run() -> None:
        try:
            connection.call("Hang")
        except Exception as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=_run, daemon=True)
    thread.start()
    assert transport.wait_for_writes(1)

    connection.disconnect()
    thread.join(timeout=2.0)

    assert isinstance(outcome["error"], ConnectionClosedError)
    assert connection.state is LinkState.DISCONNECTED
    assert not transport.is_open


def test_reconnect_after_disconnect(connection, transport) -> None:
    connection.disconnect()
    connection.disconnect()
    connection.connect()
    transport.reply_to(b"Ping V\n", "MArC_res\nV\n")
    assert connection.call("Ping") is None


def test_profile_timeout_applies_to_calls(transport, profile) -> None:
    conn = Connection.from_profile(replace(profile, call_timeout_s=0.05), transport=transport)
    with conn:
        with pytest.raises(CallTimeoutError):
            conn.call("Slow")
        assert not conn.busy


def test_peer_command_reaches_registry_and_hook(transport, profile, wait_until) -> None:
    seen: list[Invocation] = []
    conn = Connection.from_profile(profile, transport=transport, on_command=seen.append)
    conn.register_action("Add", Shape.INT_PAIR, lambda a, b: a + b)

    with conn:
        transport.feed("MArC_cmd\nAdd\nH\n2\n3\n")
        assert wait_until(lambda: len(seen) == 1)

    assert seen[0].value == 5
    assert transport.writes == []


def test_reply_glue_answers_peer_commands(transport, profile) -> None:
    conn = Connection.from_profile(replace(profile, reply_to_peer=True), transport=transport)
    conn.register_action("Add", Shape.INT_PAIR, lambda a, b: a + b)

    with conn:
        transport.feed("MArC_cmd\nAdd\nH\n2\n3\n")
        assert transport.wait_for_writes(1)
        transport.feed("MArC_cmd\nNope\nV\n")
        assert transport.wait_for_writes(2)

    assert transport.writes[0] == b"MArC_res\nI\n5\n"
    assert transport.writes[1].startswith(b"MArC_err\nNope\n")


def test_receive_errors_go_to_hook(transport, profile, wait_until) -> None:
    errors: list[Exception] = []
    conn = Connection.from_profile(profile, transport=transport, on_error=errors.append)

    with conn:
        transport.feed("MArC_res\nI\n9\n")
        assert wait_until(lambda: len(errors) == 1)

    assert isinstance(errors[0], UnsolicitedReplyError)


def test_call_from_action_handler_is_rejected(transport, profile, wait_until) -> None:
    errors: list[Exception] = []
    conn = Connection.from_profile(profile, transport=transport, on_error=errors.append)
    conn.register_action("Nested", Shape.VOID, lambda: conn.call("Ping"))

    with conn:
        transport.feed("MArC_cmd\nNested\nV\n")
        assert wait_until(lambda: len(errors) == 1)

    assert isinstance(errors[0], ActionExecutionError)
    assert isinstance(errors[0].__cause__, ActionFailedError)
    assert transport.writes == []


def test_notices_are_logged_without_callback(connection, transport, caplog, wait_until) -> None:
    caplog.set_level(logging.INFO, logger="serialrpc.core.connection")
    transport.feed("MArC_msg\nboard ready\n")
    assert wait_until(lambda: "board ready" in caplog.text)


def test_reply_frame_for_invocations() -> None:
    ok = Invocation(name="Add", shape=Shape.INT_PAIR, args=(1, 2), value=3)
    void = Invocation(name="Stop", shape=Shape.VOID, args=(), value=None)
    failed = Invocation(
        name="Nope", shape=Shape.VOID, args=(), error=ActionNotFoundError("not registered")
    )

    assert reply_frame(ok) == ResultFrame(shape=Shape.INT, value=3)
    assert reply_frame(void) == ResultFrame(shape=Shape.VOID)
    assert reply_frame(failed) == ErrorFrame(action="Nope", message="not registered")


def test_card_name_void_reply_is_empty(connection, transport) -> None:
    transport.reply_to(b"GetCardName S\n", "MArC_res\nV\n")
    assert connection.card_name() == ""


def test_non_ascii_argument_fails_call(connection, transport) -> None:
    with pytest.raises(ActionFailedError):
        connection.call("Echo", "café")
    assert transport.writes == []
    assert not connection.busy


def test_multiline_handler_error_is_flattened() -> None:
    failed = Invocation(
        name="Boom", shape=Shape.VOID, args=(), error=ActionExecutionError("bad\nstate")
    )
    assert reply_frame(failed) == ErrorFrame(action="Boom", message="bad state")
