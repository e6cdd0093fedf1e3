"""torcontrol command line.

Usage:
    torcontrol send GETINFO version          # Send a raw command
    torcontrol getinfo version traffic/read  # Query info keys
    torcontrol getconf SocksPort ORPort      # Read configuration
    torcontrol signal NEWNYM                 # Send a signal
    torcontrol events BW CIRC                # Stream events until Ctrl-C

Connection options can also come from TORCONTROL_* environment variables.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from .client import TorControl
from .config import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT, ControlConfig
from .correlator import CommandResult
from .errors import TorControlError
from .protocol.commands import Signal

T = TypeVar("T")

# Output format options
FORMAT_TEXT = "text"
FORMAT_JSON = "json"


def _run(config: ControlConfig, action: Callable[[TorControl], Awaitable[T]]) -> T:
    """Run ``action`` on a connected session and map errors to click errors."""

    async def runner() -> T:
        async with TorControl(config) as control:
            return await action(control)

    try:
        return asyncio.run(runner())
    except TorControlError as e:
        raise click.ClickException(str(e)) from e


def _echo_result(result: CommandResult, output: str, as_values: bool = False) -> None:
    if output == FORMAT_JSON:
        data: Any = result.values() if as_values else result.model_dump(exclude={"raw"})
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return
    if as_values:
        for key, value in result.values().items():
            click.echo(f"{key}={value}")
        return
    for message in result.messages:
        click.echo(message)


@click.group()
@click.option("--host", default=DEFAULT_HOST, envvar="TORCONTROL_HOST", help="Control port host")
@click.option("--port", default=DEFAULT_PORT, envvar="TORCONTROL_PORT", help="Control port")
@click.option("--path", default=None, envvar="TORCONTROL_PATH", help="Control socket path")
@click.option("--password", default=None, envvar="TORCONTROL_PASSWORD", help="Control password")
@click.option(
    "--cookie",
    "cookie_path",
    default=None,
    envvar="TORCONTROL_COOKIE",
    type=click.Path(exists=True, dir_okay=False),
    help="Authentication cookie file",
)
@click.option(
    "--timeout", default=DEFAULT_TIMEOUT, envvar="TORCONTROL_TIMEOUT", help="Command timeout (s)"
)
@click.option(
    "--format",
    "output",
    type=click.Choice([FORMAT_TEXT, FORMAT_JSON]),
    default=FORMAT_TEXT,
    help="Output format",
)
@click.option("-v", "--verbose", is_flag=True, help="Log protocol traffic")
@click.pass_context
def main(
    ctx: click.Context,
    host: str,
    port: int,
    path: str | None,
    password: str | None,
    cookie_path: str | None,
    timeout: float,
    output: str,
    verbose: bool,
) -> None:
    """Talk to a Tor control port."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = ControlConfig(
            host=host,
            port=port,
            path=path,
            password=password,
            cookie_path=cookie_path,
            persistent=True,
            timeout=timeout,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    ctx.obj = {"config": config, "output": output}


@main.command()
@click.argument("words", nargs=-1, required=True)
@click.pass_obj
def send(obj: dict[str, Any], words: tuple[str, ...]) -> None:
    """Send a raw command line."""
    line = " ".join(words)
    result = _run(obj["config"], lambda control: control.send_command(line))
    _echo_result(result, obj["output"])


@main.command()
@click.argument("keys", nargs=-1, required=True)
@click.pass_obj
def getinfo(obj: dict[str, Any], keys: tuple[str, ...]) -> None:
    """Query GETINFO keys."""
    result = _run(obj["config"], lambda control: control.get_info(*keys))
    _echo_result(result, obj["output"], as_values=True)


@main.command()
@click.argument("keys", nargs=-1, required=True)
@click.pass_obj
def getconf(obj: dict[str, Any], keys: tuple[str, ...]) -> None:
    """Read configuration options."""
    result = _run(obj["config"], lambda control: control.get_conf(*keys))
    _echo_result(result, obj["output"], as_values=True)


@main.command()
@click.argument("name", type=click.Choice([s.value for s in Signal], case_sensitive=False))
@click.pass_obj
def signal(obj: dict[str, Any], name: str) -> None:
    """Send a signal to the daemon."""
    result = _run(obj["config"], lambda control: control.signal(name))
    _echo_result(result, obj["output"])


@main.command()
@click.argument("names", nargs=-1, required=True)
@click.pass_obj
def events(obj: dict[str, Any], names: tuple[str, ...]) -> None:
    """Print pushed events until interrupted or the daemon disconnects."""
    output = obj["output"]

    async def stream(control: TorControl) -> None:
        ended = asyncio.Event()
        control.on_ended(ended.set)

        for name in names:
            event_name = name.upper()

            def printer(payload: str, event_name: str = event_name) -> None:
                if output == FORMAT_JSON:
                    click.echo(json.dumps({"event": event_name, "payload": payload}))
                else:
                    click.echo(f"{event_name} {payload}")

            await control.on(event_name, printer)

        await ended.wait()

    try:
        _run(obj["config"], stream)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
