"""Event subscription and dispatch.

The subscription set is session state: an ordered list of event names
the daemon has been told to push. It only changes after the daemon
accepted a SETEVENTS, and the connection replays it on every connect.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from .protocol.commands import SetEvents
from .protocol.events import parse_event

logger = logging.getLogger(__name__)

# Listeners receive the event payload; coroutine functions are scheduled as tasks
Listener = Callable[[str], Any]
SendCommand = Callable[[str], Awaitable[Any]]


class EventDispatcher:
    """Maps event names to listeners and tracks the subscription set."""

    def __init__(self, send: SendCommand):
        self._send = send
        self._subscribed: list[str] = []
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def subscribed(self) -> list[str]:
        """Event names currently subscribed, in subscription order."""
        return list(self._subscribed)

    def listeners(self, name: str) -> list[Listener]:
        return list(self._listeners.get(name.upper(), ()))

    async def subscribe(self, names: Iterable[str]) -> Any:
        """Replace the subscription set with ``names``.

        The full set is sent (SETEVENTS is not incremental). The local set
        only changes if the daemon accepts it.
        """
        command = SetEvents(events=list(names))
        result = await self._send(command.to_line())
        self._subscribed = command.events
        return result

    async def add_event(self, name: str) -> Any:
        """Subscribe to one more event. Already subscribed names send nothing."""
        name = name.upper()
        if name in self._subscribed:
            return None
        return await self.subscribe([*self._subscribed, name])

    async def clear_events(self) -> None:
        """Unsubscribe from everything and drop the listeners of those events."""
        previous = self._subscribed
        await self.subscribe([])
        for name in previous:
            self._listeners.pop(name, None)

    async def register(self, name: str, listener: Listener) -> None:
        """Subscribe to ``name`` and attach ``listener`` once that succeeded."""
        name = name.upper()
        await self.add_event(name)
        self._listeners[name].append(listener)

    def unregister(self, name: str, listener: Listener) -> bool:
        """Detach a listener. The subscription itself is kept."""
        listeners = self._listeners.get(name.upper())
        if not listeners or listener not in listeners:
            return False
        listeners.remove(listener)
        return True

    def dispatch(self, body: str) -> None:
        """Deliver a 650 body to the listeners of its event name."""
        event = parse_event(body)
        if event is None:
            logger.debug(f"Dropping event push: {body[:80]!r}")
            return

        for listener in list(self._listeners.get(event.name, ())):
            try:
                result = listener(event.payload)
            except Exception:
                logger.exception(f"Error in listener for {event.name}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Error in async event listener", exc_info=error)
