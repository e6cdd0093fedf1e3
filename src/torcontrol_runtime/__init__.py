"""Asyncio client for the Tor control protocol.

Provides:
- TorControl: one authenticated control session with typed command wrappers
- Event subscriptions that survive reconnects
- MockControlTransport: in-memory daemon for testing

Example:
    from torcontrol_runtime import TorControl

    async with TorControl(password="secret", persistent=True) as control:
        info = await control.get_info("version")
"""

from .client import TorControl
from .config import ControlConfig
from .connection import ConnectionManager
from .correlator import CommandCorrelator, CommandResult
from .dispatcher import EventDispatcher
from .errors import (
    AuthenticationError,
    CommandError,
    CommandTimeoutError,
    ReplyParseError,
    ResubscriptionError,
    TorControlError,
    TransportError,
)
from .transport import (
    ControlTransport,
    MockControlTransport,
    SocketControlTransport,
    TransportState,
    create_mock_transport,
    create_transport,
)

__version__ = "0.1.0"

__all__ = [
    # Session
    "TorControl",
    "ControlConfig",
    "CommandResult",
    # Components
    "ConnectionManager",
    "CommandCorrelator",
    "EventDispatcher",
    # Transports
    "ControlTransport",
    "SocketControlTransport",
    "MockControlTransport",
    "TransportState",
    "create_transport",
    "create_mock_transport",
    # Errors
    "TorControlError",
    "TransportError",
    "AuthenticationError",
    "CommandError",
    "ResubscriptionError",
    "ReplyParseError",
    "CommandTimeoutError",
]
