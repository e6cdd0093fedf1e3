"""Connection lifecycle: open, authenticate, resubscribe, route replies, close.

State machine:
    DISCONNECTED -> CONNECTING -> AUTHENTICATING -> READY
    READY -> DISCONNECTING -> DISCONNECTED
    any state -> DISCONNECTED when the socket closes

A background reader task parses replies and routes them:
- 650 pushes go to the event callback and never consume a pending slot
- every other reply resolves the oldest pending exchange (FIFO)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .config import ControlConfig
from .errors import (
    AuthenticationError,
    CommandTimeoutError,
    ReplyParseError,
    ResubscriptionError,
    TorControlError,
    TransportError,
)
from .protocol.commands import Authenticate, CommandType, Quit, SetEvents
from .protocol.reply import ASYNC_EVENT_CODE, OK_CODE, Reply, ReplyBuffer
from .transport import ControlTransport, TransportFactory, TransportState, create_transport

logger = logging.getLogger(__name__)

EventCallback = Callable[[str], None]
EndedCallback = Callable[[], None]
ResubscribeErrorCallback = Callable[[ResubscriptionError], None]


@dataclass
class PendingReply:
    """One exchange written to the socket and waiting for its reply."""

    line: str
    future: asyncio.Future[Reply] = field(repr=False)


class ConnectionManager:
    """Owns the transport of one session.

    Args:
        config: Endpoint, credentials and default timeout
        transport_factory: Builds a fresh transport per connection
            (default: socket transport for ``config``)
        on_event: Called with the body of every 650 push
        subscriptions: Returns the event names to restore after connecting
    """

    def __init__(
        self,
        config: ControlConfig,
        transport_factory: TransportFactory | None = None,
        on_event: EventCallback | None = None,
        subscriptions: Callable[[], list[str]] | None = None,
    ):
        self.config = config
        self._transport_factory = transport_factory or (lambda: create_transport(config))
        self._on_event = on_event
        self._subscriptions = subscriptions or list
        self._state = TransportState.DISCONNECTED
        self._transport: ControlTransport | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._pending: deque[PendingReply] = deque()
        self._ended_callbacks: list[EndedCallback] = []
        self._resubscribe_error_callbacks: list[ResubscribeErrorCallback] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """True while a transport is attached, authenticated or not."""
        return self._transport is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def on_ended(self, callback: EndedCallback) -> Callable[[], None]:
        """Register a callback fired whenever the connection goes away.

        Returns:
            Unsubscribe function
        """
        return _register(self._ended_callbacks, callback)

    def on_resubscribe_error(self, callback: ResubscribeErrorCallback) -> Callable[[], None]:
        """Register a callback for rejected event replays that were not raised.

        Returns:
            Unsubscribe function
        """
        return _register(self._resubscribe_error_callbacks, callback)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(
        self, strict_resubscribe: bool = True, replay_events: bool = True
    ) -> ControlTransport:
        """Return the live transport, opening and authenticating one if needed.

        Args:
            strict_resubscribe: Raise when the event replay is rejected.
                Otherwise the rejection is logged and passed to the
                on_resubscribe_error callbacks, and the connection is used as is.
            replay_events: Restore the event subscriptions after authenticating

        Raises:
            TransportError: If the endpoint cannot be reached
            AuthenticationError: If AUTHENTICATE is rejected
            ResubscriptionError: If restoring the event subscriptions fails
        """
        async with self._lock:
            if self._state == TransportState.READY and self._transport is not None:
                return self._transport

            transport = self._transport_factory()
            self._state = TransportState.CONNECTING
            try:
                await transport.open()
            except TransportError:
                self._state = TransportState.DISCONNECTED
                raise
            except OSError as e:
                self._state = TransportState.DISCONNECTED
                raise TransportError(f"Failed to connect to {self.config.endpoint}: {e}") from e

            self._transport = transport
            self._reader_task = asyncio.create_task(self._read_loop(transport))
            self._state = TransportState.AUTHENTICATING

            try:
                await self._authenticate()
                self._state = TransportState.READY
                logger.info(f"Control connection to {self.config.endpoint} ready")

                events = self._subscriptions() if replay_events else []
                if events:
                    await self._resubscribe(events, strict_resubscribe)
            except ResubscriptionError:
                raise
            except BaseException:
                # Cancellation included, so no half-open connection is left behind
                await self._teardown(transport, "Connection setup aborted")
                raise

            return transport

    async def _authenticate(self) -> None:
        try:
            secret = self.config.secret_hex()
        except OSError as e:
            raise AuthenticationError(
                f"Cannot read cookie file {self.config.cookie_path}: {e}"
            ) from e

        reply = await self.exchange(Authenticate(secret=secret).to_line())
        if reply.status_code != OK_CODE:
            raise AuthenticationError(reply.raw.strip() or reply.body)

    async def _resubscribe(self, events: list[str], strict: bool) -> None:
        line = SetEvents(events=events).to_line()
        reply = await self.exchange(line)
        if reply.status_code == OK_CODE:
            logger.info(f"Resubscribed to events: {' '.join(events)}")
            return

        logger.warning(f"Failed to resubscribe to events {events}: {reply.body}")
        error = ResubscriptionError(reply.status_code, reply.body, raw=reply.raw)
        if strict:
            raise error
        for callback in list(self._resubscribe_error_callbacks):
            try:
                callback(error)
            except Exception:
                logger.exception("Error in resubscribe error callback")

    async def disconnect(self, force: bool = False) -> None:
        """Close the connection.

        Without ``force``, sends QUIT and waits (up to the configured timeout)
        for the daemon to close the socket. With ``force``, closes at once.
        """
        async with self._lock:
            transport = self._transport
            if transport is None:
                return

            if not force:
                self._state = TransportState.DISCONNECTING
                reader = self._reader_task
                try:
                    await self.exchange(Quit().to_line())
                    if reader is not None:
                        await asyncio.wait({reader}, timeout=self.config.timeout)
                except TorControlError as e:
                    logger.debug(f"QUIT did not complete cleanly: {e}")

            await self._teardown(transport, "Connection closed")

    async def _teardown(self, transport: ControlTransport, reason: str) -> None:
        task = self._reader_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connection_lost(transport, reason)
        await transport.close()

    def _connection_lost(self, transport: ControlTransport, reason: str) -> None:
        """Forget the transport and fail everything still waiting on it."""
        if self._transport is not transport:
            return

        self._transport = None
        self._reader_task = None
        self._state = TransportState.DISCONNECTED

        while self._pending:
            pending = self._pending.popleft()
            if not pending.future.done():
                pending.future.set_exception(TransportError(reason))

        logger.info(f"Control connection to {self.config.endpoint} ended: {reason}")
        for callback in list(self._ended_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Error in connection ended callback")

    # =========================================================================
    # Exchanges
    # =========================================================================

    async def exchange(self, line: str, timeout: float | None = None) -> Reply:
        """Write one command line and wait for its reply.

        The caller is responsible for keeping a single exchange in flight.

        Raises:
            TransportError: If not connected or the connection drops
            CommandTimeoutError: If no reply arrives within ``timeout``
            ReplyParseError: If the reply is malformed
        """
        transport = self._transport
        if transport is None:
            raise TransportError("Not connected")

        pending = PendingReply(line=line, future=asyncio.get_running_loop().create_future())
        self._pending.append(pending)
        logger.debug(f"-> {_redact(line)}")

        try:
            await transport.write(f"{line}\r\n".encode())
        except TransportError:
            if pending in self._pending:
                self._pending.remove(pending)
            raise

        timeout = self.config.timeout if timeout is None else timeout
        try:
            # A timed-out future is cancelled but stays queued, so its late
            # reply is discarded instead of answering the next command.
            return await asyncio.wait_for(pending.future, timeout)
        except TimeoutError:
            raise CommandTimeoutError(_redact(line), timeout) from None

    async def _read_loop(self, transport: ControlTransport) -> None:
        """Background task reading replies and routing them."""
        buffer = ReplyBuffer()
        reason = "Connection closed by peer"
        try:
            while True:
                chunk = await transport.read()
                if not chunk:
                    break
                buffer.feed(chunk)
                self._drain(buffer)
        except TransportError as e:
            reason = str(e)
        except ReplyParseError as e:
            logger.error(f"Giving up on reply stream: {e}")
            reason = str(e)
        except Exception as e:
            logger.error(f"Read loop error: {e}")
            reason = f"Read loop error: {e}"
        self._connection_lost(transport, reason)
        await transport.close()

    def _drain(self, buffer: ReplyBuffer) -> None:
        while True:
            try:
                reply = buffer.next_reply()
            except ReplyParseError as e:
                self._route_error(e)
                continue
            if reply is None:
                return
            self._route(reply)

    def _route(self, reply: Reply) -> None:
        if reply.is_async:
            logger.debug(f"<- event {reply.body[:80]}")
            if self._on_event is not None:
                self._on_event(reply.body)
            return

        if not self._pending:
            logger.warning(f"Discarding unsolicited reply: {reply.status_code} {reply.body}")
            return

        pending = self._pending.popleft()
        if pending.future.done():
            logger.warning(
                f"Discarding late reply to {_redact(pending.line)!r}: {reply.status_code}"
            )
            return
        logger.debug(f"<- {reply.status_code} {reply.body[:80]}")
        pending.future.set_result(reply)

    def _route_error(self, error: ReplyParseError) -> None:
        if error.status_code == ASYNC_EVENT_CODE or not self._pending:
            logger.debug(f"Dropping malformed input: {error}")
            return
        pending = self._pending.popleft()
        if not pending.future.done():
            pending.future.set_exception(error)


def _register(callbacks: list[Any], callback: Any) -> Callable[[], None]:
    callbacks.append(callback)

    def unsubscribe() -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    return unsubscribe


def _redact(line: str) -> str:
    """Hide the secret of an AUTHENTICATE line."""
    if line.startswith(CommandType.AUTHENTICATE.value + " "):
        return f"{CommandType.AUTHENTICATE.value} [redacted]"
    return line
