"""Command/response correlation over the shared connection.

Commands are serialized FIFO: a caller holds the command lock from
connect through reply, so exactly one command is on the wire at a time
and replies match commands strictly in send order. Event pushes that
arrive in between are routed away by the connection and never take the
command's reply slot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from pydantic import BaseModel, Field

from .connection import ConnectionManager
from .errors import CommandError, CommandTimeoutError
from .protocol.commands import CommandType, unquote, validate_command_line
from .protocol.reply import OK_CODE, Reply
from .transport import ControlTransport

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Successful (250) reply to a command.

    Example:
        GETINFO version net/listeners/socks
        -> messages ["version=0.4.8.10", "net/listeners/socks=\\"127.0.0.1:9050\\"", "OK"]
    """

    code: int = OK_CODE
    messages: list[str] = Field(default_factory=list)  # One per logical line, prefix stripped
    raw: str = ""

    def values(self) -> dict[str, str]:
        """Parse ``key=value`` messages into a dict.

        Quoted values are unquoted; data-block values start after the
        line break that follows ``key=``.
        """
        result: dict[str, str] = {}
        for message in self.messages:
            key, sep, value = message.partition("=")
            if not sep or not key or " " in key:
                continue
            if value.startswith("\n"):
                result[key] = value[1:]
            else:
                result[key] = unquote(value)
        return result

    @classmethod
    def from_reply(cls, reply: Reply) -> CommandResult:
        return cls(
            code=reply.status_code,
            messages=[line.body for line in reply.lines],
            raw=reply.raw,
        )


class CommandCorrelator:
    """Serializes command/response pairs for one session.

    Args:
        connection: The session's connection manager
        persistent: Returns True when the connection should stay open
            between commands
    """

    def __init__(self, connection: ConnectionManager, persistent: Callable[[], bool]):
        self._connection = connection
        self._persistent = persistent
        self._lock = asyncio.Lock()

    async def connect(self) -> ControlTransport:
        """Connect in turn with queued commands."""
        async with self._lock:
            return await self._connection.connect()

    async def disconnect(self, force: bool = False) -> None:
        """Disconnect after queued commands, or immediately with ``force``."""
        if force:
            await self._connection.disconnect(force=True)
            return
        async with self._lock:
            await self._connection.disconnect()

    async def send(
        self,
        text: str,
        keep_connection: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        """Send one command line and wait for its reply.

        Args:
            text: Command line without terminator
            keep_connection: Leave a transient connection open afterwards
            timeout: Seconds to wait for the reply (default: config timeout)

        Returns:
            CommandResult for a 250 reply

        Raises:
            ValueError: If ``text`` is empty or spans several lines
            TransportError: If the connection cannot be used
            AuthenticationError: If connecting required authentication and it failed
            CommandError: If the daemon answered with any other status
            CommandTimeoutError: If no reply arrived in time
        """
        validate_command_line(text)
        # A SETEVENTS command replaces the subscription set, replaying the old one first is moot
        replay = text.split(" ", 1)[0].upper() != CommandType.SETEVENTS.value

        async with self._lock:
            force = False
            try:
                await self._connection.connect(strict_resubscribe=False, replay_events=replay)
                reply = await self._connection.exchange(text, timeout)
            except CommandTimeoutError:
                # The reply stream is now behind our queue, QUIT would wait on the stale reply
                force = True
                raise
            finally:
                await self._release(keep_connection, force)

        if reply.status_code != OK_CODE:
            raise CommandError(reply.status_code, reply.body, raw=reply.raw)
        return CommandResult.from_reply(reply)

    async def _release(self, keep_connection: bool, force: bool = False) -> None:
        """Close a transient connection once its command has resolved."""
        if keep_connection or self._persistent() or not self._connection.is_connected:
            return
        await self._connection.disconnect(force=force)
