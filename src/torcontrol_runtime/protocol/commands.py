"""Typed command requests.

Each request is a pydantic model validated on construction and
serialized with to_line(). Invalid input raises pydantic.ValidationError
(a ValueError) before anything is written to the socket.

Example:
    AddOnion(ports=[(80, "127.0.0.1:8080")], flags=["Detach"]).to_line()
    # 'ADD_ONION NEW:BEST Flags=Detach Port=80,127.0.0.1:8080'
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Any, ClassVar

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    Field,
    field_validator,
    model_validator,
)

_NEEDS_QUOTING = re.compile(r'[\s"\\]')
_TOKEN_INVALID = re.compile(r'[\s="]')
_HEX = re.compile(r"^[0-9a-fA-F]*$")


def validate_command_line(text: str) -> str:
    """Reject empty text and text that would span more than one protocol line."""
    if not text or not text.strip():
        raise ValueError("Command text must not be empty")
    if "\r" in text or "\n" in text:
        raise ValueError("Command text must be a single line")
    return text


def quote(value: str) -> str:
    """Quote a value as a protocol QuotedString when it needs it."""
    if value and not _NEEDS_QUOTING.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def unquote(value: str) -> str:
    """Inverse of quote(); unquoted values are returned unchanged."""
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def _check_token(value: str) -> str:
    if not value or _TOKEN_INVALID.search(value):
        raise ValueError(f"Invalid protocol token: {value!r}")
    return value


def _coerce_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _as_list(value: Any) -> Any:
    if isinstance(value, str):
        return [value]
    return value


Token = Annotated[str, AfterValidator(_check_token)]
Identifier = Annotated[str, BeforeValidator(_coerce_str), AfterValidator(_check_token)]


class CommandType(str, Enum):
    """Command keywords sent by this client."""

    AUTHENTICATE = "AUTHENTICATE"
    QUIT = "QUIT"

    # Configuration
    GETCONF = "GETCONF"
    SETCONF = "SETCONF"
    RESETCONF = "RESETCONF"
    SAVECONF = "SAVECONF"

    # Events
    SETEVENTS = "SETEVENTS"

    # Daemon control and queries
    SIGNAL = "SIGNAL"
    MAPADDRESS = "MAPADDRESS"
    GETINFO = "GETINFO"

    # Onion services
    ADD_ONION = "ADD_ONION"
    DEL_ONION = "DEL_ONION"
    HSFETCH = "HSFETCH"

    # Circuits, streams, routers
    EXTENDCIRCUIT = "EXTENDCIRCUIT"
    SETCIRCUITPURPOSE = "SETCIRCUITPURPOSE"
    SETROUTERPURPOSE = "SETROUTERPURPOSE"
    ATTACHSTREAM = "ATTACHSTREAM"
    CLOSECIRCUIT = "CLOSECIRCUIT"
    CLOSESTREAM = "CLOSESTREAM"


class ControlCommand(BaseModel):
    """Base for typed requests: a keyword followed by space separated arguments."""

    keyword: ClassVar[CommandType]

    def arguments(self) -> list[str]:
        return []

    def to_line(self) -> str:
        """Serialize to a single protocol line, without the line terminator."""
        return " ".join([self.keyword.value, *self.arguments()])

    @model_validator(mode="after")
    def _single_line(self) -> ControlCommand:
        validate_command_line(self.to_line())
        return self


# =============================================================================
# Session
# =============================================================================


class Authenticate(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.AUTHENTICATE

    secret: str = ""  # Hex-encoded password or cookie

    @field_validator("secret")
    @classmethod
    def _hex_only(cls, value: str) -> str:
        if not _HEX.match(value):
            raise ValueError("Authentication secret must be hex-encoded")
        return value

    def arguments(self) -> list[str]:
        return [self.secret] if self.secret else []


class Quit(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.QUIT


# =============================================================================
# Configuration
# =============================================================================


class GetConf(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.GETCONF

    keys: Annotated[list[Token], BeforeValidator(_as_list)] = Field(min_length=1)

    def arguments(self) -> list[str]:
        return list(self.keys)


class SetConf(ControlCommand):
    """Set options. A value of None resets the option to its default."""

    keyword: ClassVar[CommandType] = CommandType.SETCONF

    settings: dict[Token, str | int | bool | None] = Field(min_length=1)

    def arguments(self) -> list[str]:
        args = []
        for key, value in self.settings.items():
            if value is None:
                args.append(key)
            elif isinstance(value, bool):
                args.append(f"{key}={int(value)}")
            else:
                args.append(f"{key}={quote(str(value))}")
        return args


class ResetConf(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.RESETCONF

    keys: Annotated[list[Token], BeforeValidator(_as_list)] = Field(min_length=1)

    def arguments(self) -> list[str]:
        return list(self.keys)


class SaveConf(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.SAVECONF

    force: bool = False

    def arguments(self) -> list[str]:
        return ["FORCE"] if self.force else []


# =============================================================================
# Events
# =============================================================================


class SetEvents(ControlCommand):
    """Replace the full set of pushed events. An empty list disables events."""

    keyword: ClassVar[CommandType] = CommandType.SETEVENTS

    events: Annotated[list[Token], BeforeValidator(_as_list)] = Field(default_factory=list)

    @field_validator("events")
    @classmethod
    def _normalize(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(name.upper() for name in value))

    def arguments(self) -> list[str]:
        return list(self.events)


# =============================================================================
# Signals, address mapping, queries
# =============================================================================


class Signal(str, Enum):
    """Signals accepted by SIGNAL."""

    RELOAD = "RELOAD"
    HUP = "HUP"
    SHUTDOWN = "SHUTDOWN"
    DUMP = "DUMP"
    USR1 = "USR1"
    DEBUG = "DEBUG"
    USR2 = "USR2"
    HALT = "HALT"
    TERM = "TERM"
    INT = "INT"
    NEWNYM = "NEWNYM"
    CLEARDNSCACHE = "CLEARDNSCACHE"


# The daemon may go away after these, so no QUIT is sent afterwards
KEEP_CONNECTION_SIGNALS: frozenset[Signal] = frozenset(
    {Signal.RELOAD, Signal.SHUTDOWN, Signal.HALT, Signal.TERM}
)


class SendSignal(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.SIGNAL

    signal: Signal

    @field_validator("signal", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    def arguments(self) -> list[str]:
        return [self.signal.value]


class MapAddress(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.MAPADDRESS

    mappings: dict[Token, Token] = Field(min_length=1)

    def arguments(self) -> list[str]:
        return [f"{old}={new}" for old, new in self.mappings.items()]


class GetInfo(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.GETINFO

    keys: Annotated[list[Token], BeforeValidator(_as_list)] = Field(min_length=1)

    def arguments(self) -> list[str]:
        return list(self.keys)


# =============================================================================
# Onion services
# =============================================================================


class OnionFlag(str, Enum):
    DISCARD_PK = "DiscardPK"
    DETACH = "Detach"
    BASIC_AUTH = "BasicAuth"
    NON_ANONYMOUS = "NonAnonymous"


class OnionKeyType(str, Enum):
    RSA1024 = "RSA1024"
    ED25519_V3 = "ED25519-V3"


class OnionPort(BaseModel):
    """Virtual port of the service and optional local target (port or host:port)."""

    virtport: int = Field(ge=1, le=65535)
    target: Identifier | None = None

    def to_arg(self) -> str:
        if self.target:
            return f"Port={self.virtport},{self.target}"
        return f"Port={self.virtport}"


class AddOnion(ControlCommand):
    """Create an onion service.

    Ports accept plain ints (``80``), ``(virtport, target)`` tuples or
    OnionPort instances. Without a private key a new key is generated.
    """

    keyword: ClassVar[CommandType] = CommandType.ADD_ONION

    ports: list[OnionPort] = Field(min_length=1)
    private_key: Token | None = None
    key_type: OnionKeyType = OnionKeyType.ED25519_V3
    flags: Annotated[list[OnionFlag], BeforeValidator(_as_list)] = Field(default_factory=list)

    @field_validator("ports", mode="before")
    @classmethod
    def _coerce_ports(cls, value: Any) -> Any:
        if isinstance(value, (int, tuple, dict, OnionPort)):
            value = [value]
        ports = []
        for item in value:
            if isinstance(item, int) and not isinstance(item, bool):
                ports.append({"virtport": item})
            elif isinstance(item, tuple):
                if len(item) != 2:
                    raise ValueError(f"Port tuple must be (virtport, target), got {item!r}")
                ports.append({"virtport": item[0], "target": item[1]})
            else:
                ports.append(item)
        return ports

    def arguments(self) -> list[str]:
        if self.private_key:
            args = [f"{self.key_type.value}:{self.private_key}"]
        else:
            args = ["NEW:BEST"]
        if self.flags:
            flags = dict.fromkeys(flag.value for flag in self.flags)
            args.append("Flags=" + ",".join(flags))
        args.extend(port.to_arg() for port in self.ports)
        return args


class DelOnion(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.DEL_ONION

    service_id: Token

    def arguments(self) -> list[str]:
        return [self.service_id]


class HSFetch(ControlCommand):
    """Fetch a hidden service descriptor, optionally from specific HSDirs."""

    keyword: ClassVar[CommandType] = CommandType.HSFETCH

    address: Token
    servers: Annotated[list[Token], BeforeValidator(_as_list)] = Field(default_factory=list)

    @field_validator("servers", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def arguments(self) -> list[str]:
        return [self.address, *(f"SERVER={server}" for server in self.servers)]


# =============================================================================
# Circuits, streams, routers
# =============================================================================


class ExtendCircuit(ControlCommand):
    """Extend a circuit, or build a new one with circuit id 0."""

    keyword: ClassVar[CommandType] = CommandType.EXTENDCIRCUIT

    circuit_id: Identifier = "0"
    path: Annotated[list[Token], BeforeValidator(_as_list)] = Field(default_factory=list)
    purpose: Token | None = None

    def arguments(self) -> list[str]:
        args = [self.circuit_id]
        if self.path:
            args.append(",".join(self.path))
        if self.purpose:
            args.append(f"purpose={self.purpose}")
        return args


class SetCircuitPurpose(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.SETCIRCUITPURPOSE

    circuit_id: Identifier
    purpose: Token

    def arguments(self) -> list[str]:
        return [self.circuit_id, f"purpose={self.purpose}"]


class SetRouterPurpose(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.SETROUTERPURPOSE

    router: Token  # Nickname or key
    purpose: Token

    def arguments(self) -> list[str]:
        return [self.router, self.purpose]


class AttachStream(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.ATTACHSTREAM

    stream_id: Identifier
    circuit_id: Identifier
    hop: int | None = Field(default=None, ge=1)

    def arguments(self) -> list[str]:
        args = [self.stream_id, self.circuit_id]
        if self.hop is not None:
            args.append(f"HOP={self.hop}")
        return args


class CloseCircuit(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.CLOSECIRCUIT

    circuit_id: Identifier
    if_unused: bool = False

    def arguments(self) -> list[str]:
        return [self.circuit_id, "IfUnused"] if self.if_unused else [self.circuit_id]


class CloseStream(ControlCommand):
    keyword: ClassVar[CommandType] = CommandType.CLOSESTREAM

    stream_id: Identifier
    reason: int = Field(default=1, ge=1)  # 1 = REASON_MISC

    def arguments(self) -> list[str]:
        return [self.stream_id, str(self.reason)]
