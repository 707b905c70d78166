"""
transport.py — named duplex "pipes" on top of asyncio TCP streams.

The relay only needs something that behaves like a named pipe: listen and
wait for a peer, connect by name, ask "still connected?", read/write, close.
This module provides exactly that over TCP so it works across machines:

- The server runs ONE listener. Each incoming connection says which pipe it
  wants by sending the pipe name as its first line.
- `wait_for_peer()` blocks until every expected pipe name has a connection
  attached, then hands the set over as a dict of PipeChannel.
- Pipes that nobody is waiting for (unknown name, already taken) are closed
  straight away.
"""

import asyncio
from typing import Dict, Iterable, Optional

from . import framing
from .errors import TransportFailure

HANDSHAKE_TIMEOUT = 10.0  # seconds a fresh connection has to name its pipe
MAX_NAME_SIZE = 256


def pipe_names(prefix: str) -> Dict[str, str]:
    """Pipe names for a given prefix, keyed by role ("stdout"/"stdin")."""
    return {
        "stdout": f"{prefix}_stdOutPipe",
        "stdin": f"{prefix}_stdInPipe",
    }


class PipeChannel:
    """One end of a named pipe: a reader/writer pair plus its name."""

    def __init__(self, name: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.name = name
        self.reader = reader
        self.writer = writer

    def is_connected(self) -> bool:
        # EOF from the peer or a local close both mean the pipe is gone.
        return not self.writer.is_closing() and not self.reader.at_eof()

    async def read_record(self) -> Optional[bytes]:
        return await framing.read_line(self.reader)

    async def read_chunk(self, n: int) -> Optional[bytes]:
        return await framing.read_raw(self.reader, n)

    async def write_record(self, line: bytes) -> None:
        await framing.write_line(self.writer, line)

    async def write_raw(self, data: bytes) -> None:
        await framing.write_raw(self.writer, data)

    async def close(self) -> None:
        """Close the pipe; safe to call twice or on an already-broken pipe."""
        if not self.writer.is_closing():
            self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    def __repr__(self) -> str:
        state = "connected" if self.is_connected() else "closed"
        return f"<PipeChannel {self.name} {state}>"


class PipeListener:
    """
    Server side: accept pipe connections and group them into peer sessions.

    Usage:
        listener = PipeListener("0.0.0.0", 6600, ["X_stdOutPipe", "X_stdInPipe"])
        await listener.start()
        channels = await listener.wait_for_peer()
    """

    def __init__(self, host: str, port: int, names: Iterable[str]) -> None:
        self.host = host
        self.port = port
        self.names = list(names)
        self._pending: Dict[str, PipeChannel] = {}
        self._ready = asyncio.Event()
        self._server: Optional[asyncio.AbstractServer] = None
        self._closing = False

    async def start(self) -> None:
        """Bind and start accepting. port=0 picks a free port (see .port)."""
        self._closing = False
        try:
            self._server = await asyncio.start_server(
                self._handle_conn, self.host, self.port, limit=framing.MAX_LINE_SIZE
            )
        except OSError as exc:
            raise TransportFailure(f"Cannot listen on {self.host}:{self.port}: {exc}") from exc
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]

    async def close(self) -> None:
        self._closing = True
        # Parked pipes first: wait_closed() waits for every open connection.
        for channel in list(self._pending.values()):
            await channel.close()
        self._pending.clear()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Read the pipe name line and park the connection until a peer set is complete."""
        try:
            raw = await asyncio.wait_for(framing.read_line(reader), HANDSHAKE_TIMEOUT)
        except (asyncio.TimeoutError, ValueError, TransportFailure):
            raw = None

        name = raw.decode("utf-8", errors="replace") if raw and len(raw) <= MAX_NAME_SIZE else None
        await self._prune_stale()
        if self._closing or name not in self.names or name in self._pending:
            writer.close()
            return

        self._pending[name] = PipeChannel(name, reader, writer)
        if all(n in self._pending for n in self.names):
            self._ready.set()

    async def _prune_stale(self) -> None:
        """Drop parked pipes whose peer already hung up, freeing their names."""
        for name, channel in list(self._pending.items()):
            if not channel.is_connected() and self._pending.get(name) is channel:
                del self._pending[name]
                await channel.close()

    async def wait_for_peer(self) -> Dict[str, PipeChannel]:
        """
        Block until every expected pipe has a live connection.

        Pipes that dropped while we were waiting for the others are discarded
        so a half-dead peer never becomes a session.
        """
        while True:
            await self._ready.wait()
            self._ready.clear()
            await self._prune_stale()
            if all(n in self._pending for n in self.names):
                channels = {n: self._pending.pop(n) for n in self.names}
                return channels


async def connect_pipe(host: str, port: int, name: str) -> PipeChannel:
    """Client side: open a connection and claim the named pipe."""
    try:
        reader, writer = await asyncio.open_connection(host, port, limit=framing.MAX_LINE_SIZE)
    except OSError as exc:
        raise TransportFailure(f"Cannot connect to {host}:{port}: {exc}") from exc
    channel = PipeChannel(name, reader, writer)
    await channel.write_record(name.encode("utf-8"))
    return channel
