"""Byte-stream transports for the control connection.

Architecture:
- ControlTransport is the PROTOCOL (interface) every transport satisfies
- SocketControlTransport talks to a real daemon over TCP or a unix socket
- MockControlTransport scripts daemon replies in memory for tests

Transports only move bytes. Framing, authentication and correlation live
in the connection manager on top of them.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from enum import Enum
from typing import Protocol, runtime_checkable

from .config import ControlConfig
from .errors import TransportError

logger = logging.getLogger(__name__)

READ_SIZE = 64 * 1024


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DISCONNECTING = "disconnecting"


@runtime_checkable
class ControlTransport(Protocol):
    """Protocol for control connection transports.

    All transports must implement:
    - open/close: Lifecycle management (close is idempotent)
    - write: Send raw bytes
    - read: Receive the next chunk, b"" once the peer has closed
    """

    @property
    def is_open(self) -> bool:
        """Check if the transport is open."""
        ...

    async def open(self) -> None:
        """Open the transport.

        Raises:
            TransportError: If the endpoint cannot be reached
        """
        ...

    async def close(self) -> None:
        """Close the transport without any protocol courtesy."""
        ...

    async def write(self, data: bytes) -> None:
        """Write bytes to the daemon.

        Raises:
            TransportError: If the transport is closed or the write fails
        """
        ...

    async def read(self) -> bytes:
        """Read the next available chunk.

        Returns:
            Bytes received, or b"" at end of stream

        Raises:
            TransportError: If the read fails
        """
        ...


class SocketControlTransport:
    """Transport over a TCP socket or a unix domain socket.

    Pass ``path`` for a unix socket, ``host``/``port`` otherwise.
    """

    def __init__(self, host: str = "localhost", port: int = 9051, path: str | None = None):
        self.host = host
        self.port = port
        self.path = path
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def endpoint(self) -> str:
        return self.path or f"{self.host}:{self.port}"

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self) -> None:
        try:
            if self.path:
                self._reader, self._writer = await asyncio.open_unix_connection(self.path)
            else:
                self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        except OSError as e:
            raise TransportError(f"Failed to connect to {self.endpoint}: {e}") from e
        logger.debug(f"Socket opened to {self.endpoint}")

    async def close(self) -> None:
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        logger.debug(f"Socket to {self.endpoint} closed")

    async def write(self, data: bytes) -> None:
        if self._writer is None:
            raise TransportError("Transport not open")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"Write to {self.endpoint} failed: {e}") from e

    async def read(self) -> bytes:
        if self._reader is None:
            return b""
        try:
            return await self._reader.read(READ_SIZE)
        except OSError as e:
            raise TransportError(f"Read from {self.endpoint} failed: {e}") from e


class MockControlTransport:
    """Mock transport for testing.

    Answers each written line with a canned reply and records what was
    written. No actual I/O - everything is in-memory.

    Replies are looked up by exact line first, then by command keyword;
    anything else gets ``250 OK``. A canned reply of None means the daemon
    never answers. QUIT is answered and then the stream ends, like the
    real daemon closing the socket.

    Usage:
        transport = MockControlTransport({"GETINFO version": "250-version=0.4.8\\r\\n250 OK\\r\\n"})
        control = TorControl(transport_factory=lambda: transport)
        result = await control.get_info("version")

        assert transport.written_lines == ["AUTHENTICATE", "GETINFO version", "QUIT"]
    """

    def __init__(
        self,
        responses: dict[str, str | None] | None = None,
        fail_open: bool = False,
    ) -> None:
        self._responses: dict[str, str | None] = dict(responses or {})
        self._fail_open = fail_open
        self._written: list[str] = []
        self._incoming: asyncio.Queue[bytes] = asyncio.Queue()
        self._open = False
        self._partial = ""

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def written_lines(self) -> list[str]:
        """Get all lines written through this transport."""
        return self._written.copy()

    def set_response(self, command: str, reply: str | None) -> None:
        """Set the canned reply for an exact line or a command keyword."""
        self._responses[command] = reply

    def push(self, data: str) -> None:
        """Inject bytes from the daemon (event pushes, late replies)."""
        self._incoming.put_nowait(data.encode("utf-8"))

    def close_from_peer(self) -> None:
        """Simulate the daemon closing the connection."""
        self._incoming.put_nowait(b"")

    async def open(self) -> None:
        if self._fail_open:
            raise TransportError("Connection refused (mock)")
        # Each open starts a fresh stream; leftovers belong to the previous connection
        self._incoming = asyncio.Queue()
        self._partial = ""
        self._open = True

    async def close(self) -> None:
        if self._open:
            self._open = False
            self._incoming.put_nowait(b"")

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("Transport not open")
        self._partial += data.decode("utf-8")
        *lines, self._partial = self._partial.split("\r\n")
        for line in lines:
            self._written.append(line)
            reply = self._reply_for(line)
            if reply is not None:
                self._incoming.put_nowait(reply.encode("utf-8"))
            if line == "QUIT":
                self._incoming.put_nowait(b"")

    async def read(self) -> bytes:
        return await self._incoming.get()

    def _reply_for(self, line: str) -> str | None:
        if line in self._responses:
            return self._responses[line]
        keyword = line.split(" ", 1)[0]
        if keyword in self._responses:
            return self._responses[keyword]
        if keyword == "QUIT":
            return "250 closing connection\r\n"
        return "250 OK\r\n"


# Factory functions


TransportFactory = Callable[[], ControlTransport]


def create_transport(config: ControlConfig) -> SocketControlTransport:
    """Create a socket transport for the configured endpoint."""
    if config.path:
        return SocketControlTransport(path=config.path)
    return SocketControlTransport(host=config.host, port=config.port)


def create_mock_transport(responses: dict[str, str | None] | None = None) -> MockControlTransport:
    """Create a mock transport for testing."""
    return MockControlTransport(responses)
