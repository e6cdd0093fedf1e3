"""Control session client.

TorControl is the public entry point. It owns one ConnectionManager, one
CommandCorrelator and one EventDispatcher, and offers typed wrappers over
send_command() for the commonly used control commands.

Usage:
    async with TorControl(ControlConfig(password="secret", persistent=True)) as control:
        result = await control.get_info("version")
        print(result.values()["version"])

        await control.on("BW", lambda payload: print("bandwidth", payload))
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from .config import ControlConfig
from .connection import ConnectionManager, EndedCallback, ResubscribeErrorCallback
from .correlator import CommandCorrelator, CommandResult
from .dispatcher import EventDispatcher, Listener
from .protocol.commands import (
    KEEP_CONNECTION_SIGNALS,
    AddOnion,
    AttachStream,
    CloseCircuit,
    CloseStream,
    ControlCommand,
    DelOnion,
    ExtendCircuit,
    GetConf,
    GetInfo,
    HSFetch,
    MapAddress,
    OnionFlag,
    OnionKeyType,
    ResetConf,
    SaveConf,
    SendSignal,
    SetCircuitPurpose,
    SetConf,
    SetRouterPurpose,
    Signal,
)
from .transport import ControlTransport, TransportFactory, TransportState


class TorControl:
    """One control session to one daemon endpoint.

    Args:
        config: Session configuration (default: built from ``options``)
        transport_factory: Override how transports are created (tests, custom sockets)
        **options: ControlConfig fields, used when ``config`` is not given
    """

    def __init__(
        self,
        config: ControlConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        **options: Any,
    ):
        self.config = config or ControlConfig(**options)
        self.events = EventDispatcher(self.send_command)
        self._connection = ConnectionManager(
            self.config,
            transport_factory=transport_factory,
            on_event=self.events.dispatch,
            subscriptions=lambda: self.events.subscribed,
        )
        self._correlator = CommandCorrelator(self._connection, lambda: self.config.persistent)

    @property
    def state(self) -> TransportState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def persistent(self) -> bool:
        return self.config.persistent

    @persistent.setter
    def persistent(self, value: bool) -> None:
        self.config.persistent = bool(value)

    @property
    def subscribed_events(self) -> list[str]:
        return self.events.subscribed

    def on_ended(self, callback: EndedCallback) -> Callable[[], None]:
        """Register a callback for when the connection ends. Returns an unsubscribe function."""
        return self._connection.on_ended(callback)

    def on_resubscribe_error(self, callback: ResubscribeErrorCallback) -> Callable[[], None]:
        """Register a callback for a rejected event replay on an implicit connect.

        Commands proceed regardless; the callback receives the ResubscriptionError.
        Returns an unsubscribe function.
        """
        return self._connection.on_resubscribe_error(callback)

    # =========================================================================
    # Core
    # =========================================================================

    async def connect(self) -> ControlTransport:
        """Connect and authenticate, restoring event subscriptions."""
        return await self._correlator.connect()

    async def disconnect(self, force: bool = False) -> None:
        """Send QUIT and wait for the daemon to close, or close at once with ``force``."""
        await self._correlator.disconnect(force=force)

    async def send_command(
        self,
        command: str | ControlCommand,
        keep_connection: bool = False,
        timeout: float | None = None,
    ) -> CommandResult:
        """Send a command and wait for its reply.

        A transient session (``persistent=False``) disconnects after the
        command unless ``keep_connection`` is set.
        """
        text = command.to_line() if isinstance(command, ControlCommand) else command
        return await self._correlator.send(text, keep_connection=keep_connection, timeout=timeout)

    async def __aenter__(self) -> TorControl:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    # =========================================================================
    # Configuration
    # =========================================================================

    async def get_conf(self, *keys: str) -> CommandResult:
        return await self.send_command(GetConf(keys=list(keys)))

    async def set_conf(self, settings: dict[str, Any]) -> CommandResult:
        """Set options; a None value resets that option to its default."""
        return await self.send_command(SetConf(settings=settings))

    async def reset_conf(self, *keys: str) -> CommandResult:
        return await self.send_command(ResetConf(keys=list(keys)))

    async def save_conf(self, force: bool = False) -> CommandResult:
        return await self.send_command(SaveConf(force=force))

    # =========================================================================
    # Signals
    # =========================================================================

    async def signal(
        self, signal: Signal | str, keep_connection: bool | None = None
    ) -> CommandResult:
        """Send a signal.

        RELOAD, SHUTDOWN, HALT and TERM keep the connection by default since
        the daemon may close it on its own.
        """
        command = SendSignal(signal=signal)
        if keep_connection is None:
            keep_connection = command.signal in KEEP_CONNECTION_SIGNALS
        return await self.send_command(command, keep_connection=keep_connection)

    async def signal_reload(self) -> CommandResult:
        return await self.signal(Signal.RELOAD)

    async def signal_hup(self) -> CommandResult:
        return await self.signal(Signal.HUP)

    async def signal_shutdown(self) -> CommandResult:
        return await self.signal(Signal.SHUTDOWN)

    async def signal_dump(self) -> CommandResult:
        return await self.signal(Signal.DUMP)

    async def signal_usr1(self) -> CommandResult:
        return await self.signal(Signal.USR1)

    async def signal_debug(self) -> CommandResult:
        return await self.signal(Signal.DEBUG)

    async def signal_usr2(self) -> CommandResult:
        return await self.signal(Signal.USR2)

    async def signal_halt(self) -> CommandResult:
        return await self.signal(Signal.HALT)

    async def signal_term(self) -> CommandResult:
        return await self.signal(Signal.TERM)

    async def signal_int(self) -> CommandResult:
        return await self.signal(Signal.INT)

    async def signal_newnym(self) -> CommandResult:
        return await self.signal(Signal.NEWNYM)

    async def signal_cleardnscache(self) -> CommandResult:
        return await self.signal(Signal.CLEARDNSCACHE)

    async def new_circuit(self) -> CommandResult:
        """Alias for NEWNYM: switch to clean circuits."""
        return await self.signal_newnym()

    # =========================================================================
    # Onion services, address mapping, queries
    # =========================================================================

    async def add_onion(
        self,
        ports: Any,
        private_key: str | None = None,
        key_type: OnionKeyType | str = OnionKeyType.ED25519_V3,
        flags: Iterable[OnionFlag | str] = (),
    ) -> CommandResult:
        """Create an onion service. ``values()`` of the result holds ServiceID."""
        command = AddOnion(
            ports=ports, private_key=private_key, key_type=key_type, flags=list(flags)
        )
        return await self.send_command(command)

    async def del_onion(self, service_id: str) -> CommandResult:
        return await self.send_command(DelOnion(service_id=service_id))

    async def map_address(self, mappings: dict[str, str]) -> CommandResult:
        return await self.send_command(MapAddress(mappings=mappings))

    async def get_info(self, *keys: str) -> CommandResult:
        return await self.send_command(GetInfo(keys=list(keys)))

    async def hs_fetch(
        self, address: str, servers: str | Iterable[str] | None = None
    ) -> CommandResult:
        if servers is not None and not isinstance(servers, str):
            servers = list(servers)
        return await self.send_command(HSFetch(address=address, servers=servers))

    # =========================================================================
    # Circuits, streams, routers
    # =========================================================================

    async def extend_circuit(
        self,
        circuit_id: str | int = 0,
        path: Iterable[str] = (),
        purpose: str | None = None,
    ) -> CommandResult:
        command = ExtendCircuit(circuit_id=circuit_id, path=list(path), purpose=purpose)
        return await self.send_command(command)

    async def set_circuit_purpose(self, circuit_id: str | int, purpose: str) -> CommandResult:
        return await self.send_command(SetCircuitPurpose(circuit_id=circuit_id, purpose=purpose))

    async def set_router_purpose(self, router: str, purpose: str) -> CommandResult:
        return await self.send_command(SetRouterPurpose(router=router, purpose=purpose))

    async def attach_stream(
        self, stream_id: str | int, circuit_id: str | int, hop: int | None = None
    ) -> CommandResult:
        command = AttachStream(stream_id=stream_id, circuit_id=circuit_id, hop=hop)
        return await self.send_command(command)

    async def close_circuit(self, circuit_id: str | int, if_unused: bool = False) -> CommandResult:
        return await self.send_command(CloseCircuit(circuit_id=circuit_id, if_unused=if_unused))

    async def close_stream(self, stream_id: str | int, reason: int = 1) -> CommandResult:
        return await self.send_command(CloseStream(stream_id=stream_id, reason=reason))

    # =========================================================================
    # Events
    # =========================================================================

    async def subscribe_events(self, names: Iterable[str]) -> CommandResult:
        """Replace the event subscription set."""
        return await self.events.subscribe(names)

    async def add_event(self, name: str) -> CommandResult | None:
        """Add one event; returns None when it was already subscribed."""
        return await self.events.add_event(name)

    async def clear_events(self) -> None:
        await self.events.clear_events()

    async def on(self, name: str, listener: Listener) -> None:
        """Subscribe to ``name`` and attach ``listener`` to its pushes."""
        await self.events.register(name, listener)

    def off(self, name: str, listener: Listener) -> bool:
        return self.events.unregister(name, listener)
