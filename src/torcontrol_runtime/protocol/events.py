"""Asynchronous event pushes (status 650).

The daemon pushes events unsolicited, interleaved with command replies:

    650 BW 1024 2048
    650 CIRC 7 BUILT $AAAA~relay PURPOSE=GENERAL

The first token is the event name, the rest is the payload.
"""

from __future__ import annotations

import re

from pydantic import BaseModel

# Event names the daemon is known to push. Anything else is dropped so
# newer daemons can add events without breaking older clients.
KNOWN_EVENTS: frozenset[str] = frozenset(
    {
        "CIRC",
        "CIRC_MINOR",
        "STREAM",
        "ORCONN",
        "BW",
        "DEBUG",
        "INFO",
        "NOTICE",
        "WARN",
        "ERR",
        "NEWDESC",
        "ADDRMAP",
        "AUTHDIR_NEWDESCS",
        "DESCCHANGED",
        "NS",
        "STATUS_GENERAL",
        "STATUS_CLIENT",
        "STATUS_SERVER",
        "GUARD",
        "STREAM_BW",
        "CLIENTS_SEEN",
        "NEWCONSENSUS",
        "BUILDTIMEOUT_SET",
        "SIGNAL",
        "CONF_CHANGED",
        "CONN_BW",
        "CELL_STATS",
        "TB_EMPTY",
        "CIRC_BW",
        "TRANSPORT_LAUNCHED",
        "HS_DESC",
        "HS_DESC_CONTENT",
        "NETWORK_LIVENESS",
        "HSDIR_DESC_CONTENT",
        "HSDIR_DESC_REQUEST",
    }
)

# Data-carrying events (650+NS) end their name at a line break instead of a space
_NAME_END = re.compile(r"[ \n]")


class AsyncEvent(BaseModel):
    """A parsed event push."""

    name: str
    payload: str


def parse_event(body: str) -> AsyncEvent | None:
    """Split a 650 reply body into event name and payload.

    Returns None for bodies without a name separator, names shorter than
    two characters, and names outside KNOWN_EVENTS.
    """
    match = _NAME_END.search(body)
    if match is None or match.start() < 2:
        return None

    name = body[: match.start()].upper()
    if name not in KNOWN_EVENTS:
        return None

    return AsyncEvent(name=name, payload=body[match.end() :])
