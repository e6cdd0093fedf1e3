"""Exception hierarchy for the control client.

Every failure surfaced to callers derives from TorControlError:

- TransportError: socket could not be opened, or closed mid-operation
- AuthenticationError: the AUTHENTICATE exchange was rejected
- CommandError: a command got a non-250 reply
- ResubscriptionError: replaying SETEVENTS after a (re)connect was rejected
- ReplyParseError: a command reply did not follow the line grammar
- CommandTimeoutError: no reply arrived before the command's deadline
"""

from __future__ import annotations


class TorControlError(Exception):
    """Base exception for all control client errors."""


class TransportError(TorControlError, ConnectionError):
    """Raised when the control socket cannot be used."""


class AuthenticationError(TorControlError):
    """Raised when the daemon rejects the AUTHENTICATE command."""

    def __init__(self, reply_text: str):
        self.reply_text = reply_text
        super().__init__(f"Authentication failed with message: {reply_text}")


class CommandError(TorControlError):
    """Raised when the daemon answers a command with a non-250 status."""

    def __init__(self, code: int, message: str, raw: str = ""):
        self.code = code
        self.message = message
        self.raw = raw
        super().__init__(f"{code} {message}")


class ResubscriptionError(CommandError):
    """Raised when SETEVENTS is rejected while restoring subscriptions on connect."""


class ReplyParseError(TorControlError):
    """Raised when a reply line is not ``<3-digit code><marker><payload>``.

    ``status_code`` is the code of the frame the bad line belongs to, when
    known, so event frames (650) can be told apart from command replies.
    ``consumed`` is the number of characters parse_reply() skipped.
    """

    def __init__(
        self,
        message: str,
        line: str = "",
        status_code: int | None = None,
        consumed: int = 0,
    ):
        self.line = line
        self.status_code = status_code
        self.consumed = consumed
        super().__init__(message)


class CommandTimeoutError(TorControlError, TimeoutError):
    """Raised when a command's reply does not arrive in time."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command {command.split(' ', 1)[0]!r} timed out after {timeout}s")
