"""Control protocol layer.

Pure, I/O-free pieces of the wire protocol:
- Replies: line framing (' ', '-', '+' markers), data blocks, dot-stuffing
- Events: 650 pushes split into event name and payload
- Commands: typed, validated request models serialized to single lines
"""

from .commands import (
    KEEP_CONNECTION_SIGNALS,
    AddOnion,
    AttachStream,
    Authenticate,
    CloseCircuit,
    CloseStream,
    CommandType,
    ControlCommand,
    DelOnion,
    ExtendCircuit,
    GetConf,
    GetInfo,
    HSFetch,
    MapAddress,
    OnionFlag,
    OnionKeyType,
    OnionPort,
    Quit,
    ResetConf,
    SaveConf,
    SendSignal,
    SetCircuitPurpose,
    SetConf,
    SetEvents,
    SetRouterPurpose,
    Signal,
)
from .events import KNOWN_EVENTS, AsyncEvent, parse_event
from .reply import ASYNC_EVENT_CODE, OK_CODE, LineType, Reply, ReplyBuffer, ReplyLine, parse_reply

__all__ = [
    # Replies
    "ASYNC_EVENT_CODE",
    "OK_CODE",
    "LineType",
    "Reply",
    "ReplyLine",
    "ReplyBuffer",
    "parse_reply",
    # Events
    "KNOWN_EVENTS",
    "AsyncEvent",
    "parse_event",
    # Commands
    "CommandType",
    "ControlCommand",
    "Authenticate",
    "Quit",
    "GetConf",
    "SetConf",
    "ResetConf",
    "SaveConf",
    "SetEvents",
    "Signal",
    "SendSignal",
    "KEEP_CONNECTION_SIGNALS",
    "MapAddress",
    "GetInfo",
    "OnionFlag",
    "OnionKeyType",
    "OnionPort",
    "AddOnion",
    "DelOnion",
    "HSFetch",
    "ExtendCircuit",
    "SetCircuitPurpose",
    "SetRouterPurpose",
    "AttachStream",
    "CloseCircuit",
    "CloseStream",
]
