"""
relay.py — per-session plumbing: the two pumps and the Session that owns them.

What this module does:
- outbound_pump: command host output -> pipe (one bundle line per chunk when
  a passphrase is set, raw bytes otherwise).
- inbound_pump: pipe -> command host input (or the local display on the
  client). Bundles that fail to decrypt/decode are dropped without a word.
- Session: the channels, the host, the pump tasks and a shared "active"
  event. Whoever finishes first clears the event; the supervisor polls it.

Pumps never raise into the supervisor. They return a PumpResult, and an
error in there is what the supervisor looks at when it tears down.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from . import messages as m
from .crypto import PaddingStrategy
from .host import CommandHost
from .transport import PipeChannel

DEFAULT_CHUNK_SIZE = 1024
JOIN_TIMEOUT = 5.0  # seconds teardown waits for a pump before cancelling it

Source = Callable[[int], Awaitable[Optional[bytes]]]
Sink = Callable[[bytes], Awaitable[None]]


@dataclass
class PumpResult:
    """How a pump ended. error is None for a clean end-of-stream."""

    name: str
    units: int = 0
    dropped: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def outbound_pump(
    source: Source,
    channel: PipeChannel,
    passphrase: Optional[str] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    padding: Optional[PaddingStrategy] = None,
    active: Optional[asyncio.Event] = None,
    name: str = "outbound",
) -> PumpResult:
    """
    Move bytes from `source` (e.g. CommandHost.read_output) to the pipe.

    Ends when the source reports end-of-stream (None) or the pipe write fails.
    """
    result = PumpResult(name)
    try:
        while True:
            unit = await source(chunk_size)
            if unit is None:
                break
            if passphrase:
                await channel.write_record(m.encrypt(unit, passphrase, padding).encode("ascii"))
            else:
                await channel.write_raw(unit)
            result.units += 1
    except Exception as exc:
        result.error = exc
    finally:
        if active is not None:
            active.clear()
    return result


async def inbound_pump(
    channel: PipeChannel,
    sink: Sink,
    passphrase: Optional[str] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    active: Optional[asyncio.Event] = None,
    name: str = "inbound",
) -> PumpResult:
    """
    Move records from the pipe into `sink` (e.g. CommandHost.write_input).

    With a passphrase every record is a bundle line; one that doesn't
    decrypt is counted in `dropped` and otherwise ignored. Ends on
    end-of-stream or any transport/sink error.
    """
    result = PumpResult(name)
    try:
        while True:
            if passphrase:
                record = await channel.read_record()
                if record is None:
                    break
                unit = m.try_decrypt(record, passphrase)
                if unit is None:
                    result.dropped += 1
                    continue
            else:
                unit = await channel.read_chunk(chunk_size)
                if unit is None:
                    break
            if unit:
                await sink(unit)
            result.units += 1
    except Exception as exc:
        result.error = exc
    finally:
        if active is not None:
            active.clear()
    return result


@dataclass
class Session:
    """
    Runtime state of one connected peer. Owned by a single supervisor loop
    iteration and thrown away at teardown.
    """

    channels: Dict[str, PipeChannel]
    host: Optional[CommandHost] = None
    pumps: List["asyncio.Task[PumpResult]"] = field(default_factory=list)
    active: asyncio.Event = field(default_factory=asyncio.Event)

    def start_pump(self, coro: Awaitable[PumpResult], name: str) -> "asyncio.Task[PumpResult]":
        self.active.set()
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self.pumps.append(task)
        return task

    def is_alive(self) -> bool:
        if not self.active.is_set():
            return False
        if any(not ch.is_connected() for ch in self.channels.values()):
            return False
        if self.host is not None and self.host.has_exited():
            return False
        return True

    async def teardown(self) -> List[PumpResult]:
        """
        Kill the host if needed, close every pipe, then join the pumps.

        Killing the host and closing the pipes is what unblocks a pump that
        is still waiting on a read. A pump still stuck after JOIN_TIMEOUT is
        cancelled.
        """
        self.active.clear()
        if self.host is not None:
            self.host.kill()
        for channel in self.channels.values():
            await channel.close()

        results: List[PumpResult] = []
        if self.pumps:
            done, pending = await asyncio.wait(self.pumps, timeout=JOIN_TIMEOUT)
            for task in pending:
                task.cancel()
            for task in self.pumps:
                if task in done:
                    results.append(task.result())
                else:
                    results.append(PumpResult(task.get_name(), error=asyncio.CancelledError()))
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self.host is not None:
            try:
                await asyncio.wait_for(self.host.wait(), JOIN_TIMEOUT)
            except asyncio.TimeoutError:
                pass
        return results
