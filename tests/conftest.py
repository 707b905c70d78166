"""
shellpipe test configuration.

Shared fixtures: a scripted command host (a tiny Python echo shell, so the
tests never depend on /bin/sh), in-memory pipe channels for pump tests, and
a polling helper for waiting on supervisor state.
"""

import asyncio
import sys
from typing import Callable, List, Optional

import pytest

from shellpipe.crypto import UniformPadding
from shellpipe.errors import TransportFailure

# Echoes every command back as "echo:<cmd>" and stops on "exit" (any case).
ECHO_HOST = (
    "import sys\n"
    "for line in sys.stdin:\n"
    "    cmd = line.strip()\n"
    "    if cmd.lower() == 'exit':\n"
    "        break\n"
    "    sys.stdout.write('echo:' + cmd + '\\n')\n"
    "    sys.stdout.flush()\n"
)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: loopback server/client tests")


@pytest.fixture
def echo_host_argv() -> List[str]:
    return [sys.executable, "-u", "-c", ECHO_HOST]


@pytest.fixture
def small_padding() -> UniformPadding:
    """Keeps bundles short in tests that push many of them."""
    return UniformPadding(0, 16)


class FakeChannel:
    """
    In-memory stand-in for PipeChannel.

    `incoming` is what the pump will read (records or raw chunks, in order);
    everything written ends up in `records` / `raw`.
    """

    def __init__(self, incoming: Optional[List[bytes]] = None, fail_writes: bool = False) -> None:
        self.name = "fake"
        self.incoming = list(incoming or [])
        self.records: List[bytes] = []
        self.raw: List[bytes] = []
        self.fail_writes = fail_writes
        self.closed = False

    def is_connected(self) -> bool:
        return not self.closed

    async def read_record(self) -> Optional[bytes]:
        await asyncio.sleep(0)
        return self.incoming.pop(0) if self.incoming else None

    async def read_chunk(self, n: int) -> Optional[bytes]:
        await asyncio.sleep(0)
        return self.incoming.pop(0)[:n] if self.incoming else None

    async def write_record(self, line: bytes) -> None:
        if self.fail_writes:
            raise TransportFailure("pipe broken")
        self.records.append(line)

    async def write_raw(self, data: bytes) -> None:
        if self.fail_writes:
            raise TransportFailure("pipe broken")
        self.raw.append(data)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_channel_factory() -> Callable[..., FakeChannel]:
    return FakeChannel


async def _wait_until(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02) -> None:
    """Poll `predicate` until true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Timed out waiting for condition")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until() -> Callable:
    return _wait_until
