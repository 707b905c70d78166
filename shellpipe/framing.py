import asyncio
from typing import Optional

from .errors import TransportFailure

"""
framing.py — tiny newline / raw framing helpers for asyncio streams.

Protocol (simple on purpose):
- Encrypted mode: one bundle per line, '\\n' terminated. Bundles are
  Base64url-in-JSON so they never contain a newline themselves.
- Plain mode: raw bytes, no framing at all; whatever the shell printed is
  what goes over the pipe.
- Hard cap at 4 MiB per line so a buggy peer can't make us buffer forever.

End-of-stream is reported as None rather than an exception: a closing peer
is the normal way a session ends.
"""

MAX_LINE_SIZE = 4 * 1024 * 1024  # 4 MiB hard limit
NEWLINE = b"\n"


async def read_line(reader: asyncio.StreamReader) -> Optional[bytes]:
    """
    Read one newline-terminated record and return it without the newline.

    Returns:
        The record bytes, or None on end-of-stream. A final unterminated
        record (peer closed mid-line) is still returned.

    Raises:
        ValueError: if the line is longer than the reader's limit.
        TransportFailure: if the connection breaks while reading.
    """
    try:
        line = await reader.readuntil(NEWLINE)
    except asyncio.IncompleteReadError as exc:
        # Peer went away; hand back whatever partial line we got.
        return exc.partial or None
    except asyncio.LimitOverrunError as exc:
        raise ValueError(f"Line too large: > {MAX_LINE_SIZE}") from exc
    except (ConnectionError, OSError) as exc:
        raise TransportFailure(f"Read failed: {exc}") from exc
    return line[:-1]


async def read_raw(reader: asyncio.StreamReader, n: int) -> Optional[bytes]:
    """Read up to n bytes (whatever is available). None on end-of-stream."""
    try:
        data = await reader.read(n)
    except (ConnectionError, OSError) as exc:
        raise TransportFailure(f"Read failed: {exc}") from exc
    return data or None


async def write_line(writer: asyncio.StreamWriter, line: bytes) -> None:
    """
    Write one record followed by '\\n'.

    The record itself must not contain a newline, otherwise the receiver
    would split it in two.
    """
    if NEWLINE in line:
        raise ValueError("Record must not contain a newline")
    if len(line) > MAX_LINE_SIZE:
        raise ValueError("Record exceeds maximum size")
    await write_raw(writer, line + NEWLINE)


async def write_raw(writer: asyncio.StreamWriter, data: bytes) -> None:
    """Write bytes as-is and drain. Any socket error becomes TransportFailure."""
    if writer.is_closing():
        raise TransportFailure("Write on closed channel")
    try:
        writer.write(data)
        await writer.drain()  # Let the transport flush; important under backpressure.
    except (ConnectionError, OSError) as exc:
        raise TransportFailure(f"Write failed: {exc}") from exc
