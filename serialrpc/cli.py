"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any

import typer

from serialrpc.api import resolve_profile
from serialrpc.core.connection import Connection
from serialrpc.core.errors import SerialRpcError
from serialrpc.core.model import Invocation, Shape
from serialrpc.core.profiles import load_profiles
from serialrpc.transports.serial_port import list_ports

app = typer.Typer(help="Call procedures on a serial-connected microcontroller")

ProfileOption = typer.Option(None, "--profile", help="Link profile ID")
PortOption = typer.Option(None, "--port", help="Serial port, e.g. /dev/ttyUSB0 or COM5")
BaudOption = typer.Option(None, "--baud", help="Baud rate")
TimeoutOption = typer.Option(None, "--timeout", help="Seconds to wait for the reply")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open_connection(
    profile_id: str | None,
    port: str | None,
    baud: int | None,
    *,
    reply_to_peer: bool = False,
    **hooks: Any,
) -> Connection:
    profile = resolve_profile(profile_id=profile_id, port=port, baud_rate=baud)
    if reply_to_peer:
        profile = replace(profile, reply_to_peer=True)
    connection = Connection.from_profile(profile, **hooks)
    connection.connect()
    return connection


def _parse_call_args(raw: list[str], shape: Shape | None) -> tuple[Shape, tuple[Any, ...]]:
    if shape is None:
        if not raw:
            shape = Shape.VOID
        elif len(raw) == 2:
            shape = Shape.INT_PAIR
        elif len(raw) == 1 and _looks_like_float(raw[0]):
            shape = Shape.FLOAT
        elif len(raw) == 1:
            shape = Shape.STRING
        else:
            raise typer.BadParameter(f"No call shape takes {len(raw)} arguments")

    if len(raw) != shape.arity:
        raise typer.BadParameter(f"Shape {shape.value} takes {shape.arity} argument(s), got {len(raw)}")
    try:
        if shape is Shape.INT_PAIR:
            return shape, (int(raw[0]), int(raw[1]))
        if shape is Shape.FLOAT:
            return shape, (float(raw[0]),)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid argument for shape {shape.value}: {exc}") from None
    return shape, tuple(raw)


def _looks_like_float(value: str) -> bool:
    if "." not in value:
        return False
    try:
        float(value)
    except ValueError:
        return False
    return True


def _describe(invocation: Invocation) -> str:
    args = ", ".join(repr(a) for a in invocation.args)
    head = f"{invocation.name}({args})"
    if invocation.error is not None:
        return f"{head} failed: {invocation.error}"
    return f"{head} -> {invocation.value!r}"


@app.command("ports")
def show_ports() -> None:
    """List serial ports present on this machine."""
    ports = list_ports()
    if not ports:
        typer.echo("No serial ports found")
        return
    for port in ports:
        typer.echo(f"{port.device}: {port.description}")


@app.command("profiles")
def show_profiles() -> None:
    """List packaged and user link profiles."""
    try:
        loaded = load_profiles()
    except SerialRpcError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    if not loaded.profiles:
        typer.echo("No profiles loaded")
        raise typer.Exit(code=1)
    for profile in sorted(loaded.profiles.values(), key=lambda p: p.id):
        typer.echo(f"{profile.id}: {profile.name} ({profile.port} @ {profile.baud_rate})")


@app.command("card")
def card(
    profile: str | None = ProfileOption,
    port: str | None = PortOption,
    baud: int | None = BaudOption,
    timeout: float | None = TimeoutOption,
) -> None:
    """Print the card name declared by the sketch."""
    try:
        connection = _open_connection(profile, port, baud)
        try:
            typer.echo(connection.card_name(timeout=timeout))
        finally:
            connection.disconnect()
    except SerialRpcError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("call")
def call(
    action: str,
    args: list[str] | None = typer.Argument(None),
    shape: str | None = typer.Option(None, "--shape", help="V, H, S or F; inferred when omitted"),
    profile: str | None = ProfileOption,
    port: str | None = PortOption,
    baud: int | None = BaudOption,
    timeout: float | None = TimeoutOption,
) -> None:
    """Call ACTION on the board and print its result."""
    try:
        selected = Shape.from_tag(shape.upper()) if shape else None
    except ValueError:
        raise typer.BadParameter(f"Unknown shape '{shape}'", param_hint="--shape") from None
    call_shape, call_args = _parse_call_args(list(args or []), selected)

    try:
        connection = _open_connection(profile, port, baud)
        try:
            result = connection.call(action, *call_args, shape=call_shape, timeout=timeout)
        finally:
            connection.disconnect()
    except SerialRpcError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo("OK" if result is None else str(result))


@app.command("listen")
def listen(
    seconds: float | None = typer.Option(None, "--seconds", help="Stop after N seconds"),
    reply: bool = typer.Option(False, "--reply", help="Answer peer commands with result or error frames"),
    profile: str | None = ProfileOption,
    port: str | None = PortOption,
    baud: int | None = BaudOption,
) -> None:
    """Print notices and commands sent by the board."""
    done = threading.Event()

    def _on_notice(message: str) -> None:
        typer.echo(f"notice: {message}")

    def _on_command(invocation: Invocation) -> None:
        typer.echo(f"command: {_describe(invocation)}")

    def _on_error(exc: Exception) -> None:
        typer.echo(f"Warning: {exc}", err=True)

    try:
        connection = _open_connection(
            profile,
            port,
            baud,
            on_notice=_on_notice,
            on_command=_on_command,
            on_error=_on_error,
            reply_to_peer=reply,
        )
    except SerialRpcError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    try:
        done.wait(seconds)
    except KeyboardInterrupt:
        pass
    finally:
        connection.disconnect()


def run() -> None:
    app()


if __name__ == "__main__":
    run()
