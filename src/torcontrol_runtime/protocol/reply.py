"""Reply framing for the control protocol.

Every reply line has the shape ``<3-digit code><marker><payload>``:

- ``' '`` final line of a reply (single-line replies are just this line)
- ``'-'`` one line of a multi-line reply, more lines follow
- ``'+'`` a line followed by a data block, terminated by a lone ``.``

Example (multi-line with a data block):
    250-version=0.4.8.10
    250+config-text=
    SocksPort 9050
    ..hidden
    .
    250 OK

parse_reply() is the pure parser. ReplyBuffer wraps it for a byte
stream, buffering across reads and yielding back-to-back replies.
"""

from __future__ import annotations

import codecs
import re
from collections import deque
from enum import Enum

from pydantic import BaseModel, Field

from ..errors import ReplyParseError

ASYNC_EVENT_CODE = 650
OK_CODE = 250

# Upper bound, in characters, for one unfinished reply
MAX_REPLY_SIZE = 64 * 1024 * 1024

_LINE_END = re.compile(r"\r?\n")


class LineType(str, Enum):
    """Marker character following the status code."""

    SINGLE = " "
    CONTINUATION = "-"
    DATA = "+"


class ReplyLine(BaseModel):
    """One logical line of a reply."""

    status_code: int
    line_type: LineType
    text: str
    data: str | None = None  # Unstuffed data block for '+' lines

    @property
    def body(self) -> str:
        """Line text, followed by its data block if it carries one."""
        if self.data is None:
            return self.text
        return f"{self.text}\n{self.data}"


class Reply(BaseModel):
    """A complete reply: every line up to and including the final ``' '`` line."""

    status_code: int
    line_type: LineType  # Marker of the first line
    body: str
    lines: list[ReplyLine] = Field(default_factory=list)
    raw: str = ""

    @property
    def is_ok(self) -> bool:
        return self.status_code == OK_CODE

    @property
    def is_async(self) -> bool:
        """True for unsolicited event pushes."""
        return self.status_code == ASYNC_EVENT_CODE


def parse_reply(data: str) -> tuple[Reply, int] | None:
    """Parse the first reply at the start of ``data``.

    Blank lines before the reply are skipped.

    Returns:
        ``(reply, consumed)`` where ``consumed`` is the number of characters
        the reply occupies, or None if the reply is not complete yet

    Raises:
        ReplyParseError: If a line has no 3-digit code or an unknown marker
    """
    assembler = _ReplyAssembler()
    pos = 0
    for match in _LINE_END.finditer(data):
        line = data[pos : match.start()]
        try:
            reply = assembler.push(line, match.group())
        except ReplyParseError as e:
            e.consumed = match.end()
            raise
        pos = match.end()
        if reply is not None:
            return reply, pos
    return None


def _split_line(line: str) -> tuple[int, LineType, str]:
    """Split a status line into code, marker and payload."""
    code = line[:3]
    if len(line) < 4 or not code.isdigit():
        raise ReplyParseError(f"Malformed reply line: {line!r}", line=line)
    try:
        line_type = LineType(line[3])
    except ValueError:
        raise ReplyParseError(
            f"Unknown line marker {line[3]!r} in reply line: {line!r}",
            line=line,
            status_code=int(code),
        ) from None
    return int(code), line_type, line[4:]


class _ReplyAssembler:
    """Builds one reply at a time from complete lines.

    Each line is looked at once, so a large data block costs linear work
    however it is split across reads.
    """

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._lines: list[ReplyLine] = []
        self._raw: list[str] = []
        self._data_head: tuple[int, str] | None = None
        self._data: list[str] = []
        self.size = 0

    @property
    def _status_code(self) -> int | None:
        if self._lines:
            return self._lines[0].status_code
        if self._data_head is not None:
            return self._data_head[0]
        return None

    def push(self, line: str, terminator: str) -> Reply | None:
        """Add one line without its terminator; return the reply it completes.

        Raises:
            ReplyParseError: After discarding the partial reply
        """
        if not line and self._status_code is None:
            return None

        self._raw.append(line + terminator)
        self.size += len(line) + len(terminator)

        if self._data_head is not None:
            self._push_data(line)
            return None

        try:
            code, line_type, text = _split_line(line)
        except ReplyParseError as e:
            if self._status_code is not None:
                e.status_code = self._status_code
            self._reset()
            raise

        if line_type == LineType.DATA:
            self._data_head = (code, text)
            return None

        self._lines.append(ReplyLine(status_code=code, line_type=line_type, text=text))
        if line_type == LineType.SINGLE:
            return self._finish()
        return None

    def _push_data(self, line: str) -> None:
        """Collect data lines up to the lone '.' terminator, undoing dot-stuffing."""
        if line == ".":
            code, text = self._data_head
            self._lines.append(
                ReplyLine(
                    status_code=code,
                    line_type=LineType.DATA,
                    text=text,
                    data="\n".join(self._data),
                )
            )
            self._data_head = None
            self._data = []
            return
        if line.startswith(".."):
            line = line[1:]
        self._data.append(line)

    def _finish(self) -> Reply:
        lines = self._lines
        reply = Reply(
            status_code=lines[0].status_code,
            line_type=lines[0].line_type,
            body="\n".join(line.body for line in lines),
            lines=lines,
            raw="".join(self._raw),
        )
        self._reset()
        return reply


class ReplyBuffer:
    """Accumulates socket reads and hands out complete replies.

    Usage:
        buffer = ReplyBuffer()
        buffer.feed(chunk)
        while (reply := buffer.next_reply()) is not None:
            route(reply)

    Args:
        max_size: Most characters held for one unfinished reply
    """

    def __init__(self, max_size: int = MAX_REPLY_SIZE) -> None:
        self.max_size = max_size
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""
        self._lines: deque[tuple[str, str]] = deque()
        self._queued = 0
        self._assembler = _ReplyAssembler()

    def __len__(self) -> int:
        return len(self._partial) + self._queued + self._assembler.size

    def feed(self, chunk: bytes) -> None:
        """Append raw bytes from the transport.

        Raises:
            ReplyParseError: If the unfinished reply grows past ``max_size``
        """
        text = self._partial + self._decoder.decode(chunk)
        pos = 0
        # The old tail holds no line feed, only its last character can start a CRLF
        for match in _LINE_END.finditer(text, max(len(self._partial) - 1, 0)):
            line = text[pos : match.start()]
            self._lines.append((line, match.group()))
            self._queued += match.end() - pos
            pos = match.end()
        self._partial = text[pos:]

        if len(self) > self.max_size:
            raise ReplyParseError(f"Reply exceeds {self.max_size} characters")

    def next_reply(self) -> Reply | None:
        """Pop the next complete reply, or None if more bytes are needed.

        Raises:
            ReplyParseError: After dropping the malformed input it reports
        """
        while self._lines:
            line, terminator = self._lines.popleft()
            self._queued -= len(line) + len(terminator)
            reply = self._assembler.push(line, terminator)
            if reply is not None:
                return reply
        return None
