"""
host.py — the interactive command host (the shell on the server side).

A thin wrapper over an asyncio subprocess with piped stdin/stdout. stderr is
folded into stdout so error output reaches the peer instead of vanishing.
"""

import asyncio
import os
import sys
from typing import List, Optional, Sequence

from .errors import HostSpawnFailure


def default_shell() -> List[str]:
    """powershell on Windows, the user's $SHELL (or /bin/sh) elsewhere."""
    if sys.platform.startswith("win"):
        return ["powershell.exe"]
    return [os.environ.get("SHELL") or "/bin/sh"]


class CommandHost:
    """Handle on a running command host process."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self.process = process

    @property
    def pid(self) -> int:
        return self.process.pid

    def has_exited(self) -> bool:
        return self.process.returncode is not None

    async def read_output(self, n: int) -> Optional[bytes]:
        """Up to n bytes of output; None once the host closed its stdout."""
        data = await self.process.stdout.read(n)
        return data or None

    async def write_input(self, data: bytes) -> None:
        stdin = self.process.stdin
        stdin.write(data)
        await stdin.drain()

    def kill(self) -> None:
        """Force-terminate; a process that already exited is left alone."""
        if self.has_exited():
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int:
        return await self.process.wait()


async def spawn_host(
    argv: Optional[Sequence[str]] = None,
    user: Optional[str] = None,
    cwd: Optional[str] = None,
) -> CommandHost:
    """
    Launch the command host.

    `user` runs it under another account (POSIX: needs the privilege to
    switch users). Any launch problem is reported as HostSpawnFailure.
    """
    argv = list(argv or default_shell())
    kwargs = {}
    if user:
        kwargs["user"] = user
        if cwd is None:
            cwd = os.environ.get("SystemRoot") or "/"
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=cwd,
            **kwargs,
        )
    except (OSError, ValueError, KeyError) as exc:
        # KeyError: unknown user name on POSIX.
        raise HostSpawnFailure(f"Cannot start {argv[0]!r}: {exc}") from exc
    return CommandHost(process)
