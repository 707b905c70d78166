import asyncio
import codecs
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, TextIO

from . import messages as m
from .crypto import PaddingStrategy
from .errors import HostSpawnFailure, TransportFailure
from .host import spawn_host
from .relay import DEFAULT_CHUNK_SIZE, PumpResult, Session, inbound_pump, outbound_pump
from .transport import PipeListener, connect_pipe, pipe_names

"""
node.py — server + client roles (the connection supervisors).

Server:
  spawn shell -> wait for a peer on both pipes -> relay until something
  drops -> kill/close/join -> spawn a fresh shell for the next peer.
  One peer at a time, forever, unless the shell can't be started at all.

Client:
  connect both pipes -> print whatever comes back on the stdout pipe ->
  read commands from the keyboard on the main task and push them down the
  stdin pipe -> "exit" (any case) or end-of-input ends the session.

Notes:
- Liveness is polled (every poll_interval) rather than pushed: pipes and the
  shell are sampled, and the pumps clear the session's "active" event on exit.
- Crypto failures are never reported; they just produce no output.
"""

DEFAULT_PORT = 6600
DEFAULT_PREFIX = "DCSC"
LOCAL_MACHINE = "."


def status(message: str, icon: str = "*") -> None:
    """Lifecycle messages: '*' working, '+' success, '!' ended, 'x' error."""
    print(f"[{icon}] {message}", flush=True)


@dataclass
class PipeConfig:
    """Everything the server/client need; built by run_node from CLI + env."""
    passphrase: Optional[str] = None
    client: bool = False
    server_name: str = LOCAL_MACHINE     # client: where the server runs
    host: str = "0.0.0.0"                # server: bind address
    port: int = DEFAULT_PORT
    prefix: str = DEFAULT_PREFIX
    username: Optional[str] = None       # server: run the shell as this user
    shell: Optional[Sequence[str]] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    poll_interval: float = 0.1
    exit_grace: float = 0.5
    padding: Optional[PaddingStrategy] = None

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if not self.prefix:
            raise ValueError("prefix must not be empty")

    @property
    def encrypted(self) -> bool:
        return bool(self.passphrase)

    @property
    def remote_host(self) -> str:
        """'.' (or nothing) means this machine, like a local named pipe."""
        if not self.server_name or self.server_name == LOCAL_MACHINE:
            return "127.0.0.1"
        return self.server_name


async def watch_session(session: Session, interval: float) -> None:
    """Sample pipes + shell every `interval` seconds until something is gone."""
    while session.is_alive():
        await asyncio.sleep(interval)


class ServerState(Enum):
    IDLE = "idle"
    SPAWNING_HOST = "spawning_host"
    WAITING_FOR_PEER = "waiting_for_peer"
    CONNECTED = "connected"
    TEARDOWN = "teardown"


class ShellPipeServer:
    """
    Long-running server: one shell per peer, peers served one after another.

      - Shell spawn failure is fatal for this server (no retry).
      - Anything that goes wrong inside a session only ends that session.
    """
    def __init__(self, config: PipeConfig, max_sessions: Optional[int] = None) -> None:
        self.config = config
        self.max_sessions = max_sessions
        self.names = pipe_names(config.prefix)
        self.listener = PipeListener(config.host, config.port, self.names.values())
        self.state = ServerState.IDLE
        self.sessions_served = 0
        self.session: Optional[Session] = None
        self.last_results: List[PumpResult] = []
        self._started = False

    @property
    def port(self) -> int:
        return self.listener.port

    async def start(self) -> None:
        """Bind the listener (idempotent). serve_forever() calls this too."""
        if not self._started:
            await self.listener.start()
            self._started = True

    async def serve_forever(self) -> None:
        await self.start()
        try:
            while self.max_sessions is None or self.sessions_served < self.max_sessions:
                try:
                    await self.run_once()
                except HostSpawnFailure as exc:
                    status(f'Exception: "{exc}"', "x")
                    break
        finally:
            self.state = ServerState.IDLE
            await self.listener.close()
            self._started = False

    async def run_once(self) -> List[PumpResult]:
        """One full session: spawn, wait, relay, tear down."""
        cfg = self.config

        self.state = ServerState.SPAWNING_HOST
        host = await spawn_host(cfg.shell, user=cfg.username)

        self.state = ServerState.WAITING_FOR_PEER
        status("Waiting for peer...", "*")
        try:
            channels = await self.listener.wait_for_peer()
        except BaseException:
            # Cancelled while idle; don't leave an orphan shell behind.
            host.kill()
            raise

        self.state = ServerState.CONNECTED
        status("Peer connected!", "+")

        session = Session(
            channels={"stdout": channels[self.names["stdout"]], "stdin": channels[self.names["stdin"]]},
            host=host,
        )
        self.session = session
        session.start_pump(outbound_pump(
            host.read_output, session.channels["stdout"], cfg.passphrase,
            chunk_size=cfg.chunk_size, padding=cfg.padding, active=session.active, name="stdout",
        ), "stdout")
        session.start_pump(inbound_pump(
            session.channels["stdin"], host.write_input, cfg.passphrase,
            chunk_size=cfg.chunk_size, active=session.active, name="stdin",
        ), "stdin")

        try:
            await watch_session(session, cfg.poll_interval)
        finally:
            self.state = ServerState.TEARDOWN
            self.last_results = await session.teardown()

        self.sessions_served += 1
        self.state = ServerState.IDLE
        status("Peer disconnected!", "!")
        return self.last_results


class ClientState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    TEARDOWN = "teardown"
    TERMINAL = "terminal"


class ShellPipeClient:
    """
    Single-session client. The inbound direction (remote shell output) runs
    as a pump; the outbound direction (our commands) runs on the calling task.
    """
    def __init__(
        self,
        config: PipeConfig,
        input_func: Optional[Callable[[], str]] = None,
        output: Optional[TextIO] = None,
    ) -> None:
        self.config = config
        self.names = pipe_names(config.prefix)
        self.input_func = input_func or input
        self.output = output or sys.stdout
        self.state = ClientState.CONNECTING
        # Chunks can split a multi-byte character; keep the tail between writes.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def _render(self, data: bytes) -> None:
        text = self._decoder.decode(data)
        if text:
            self.output.write(text)
            self.output.flush()

    async def _read_command(self) -> str:
        # input() blocks; keep it off the event loop so the pump keeps printing.
        return await asyncio.to_thread(self.input_func)

    async def send_command(self, session: Session, cmd: str) -> None:
        data = (cmd + "\n").encode("utf-8")
        channel = session.channels["stdin"]
        if self.config.encrypted:
            line = m.encrypt(data, self.config.passphrase, self.config.padding)
            await channel.write_record(line.encode("ascii"))
        else:
            await channel.write_raw(data)

    async def run(self) -> List[PumpResult]:
        cfg = self.config
        self.state = ClientState.CONNECTING
        status("Establishing {} connection to remote system...".format(
            "a secure" if cfg.encrypted else "an unsecure"), "*")

        stdout_pipe = await connect_pipe(cfg.remote_host, cfg.port, self.names["stdout"])
        try:
            stdin_pipe = await connect_pipe(cfg.remote_host, cfg.port, self.names["stdin"])
        except TransportFailure:
            await stdout_pipe.close()
            raise

        self.state = ClientState.CONNECTED
        status("Successfully connected, spawning shell...", "+")

        session = Session(channels={"stdout": stdout_pipe, "stdin": stdin_pipe})
        session.start_pump(inbound_pump(
            stdout_pipe, self._render, cfg.passphrase,
            chunk_size=cfg.chunk_size, active=session.active, name="stdout",
        ), "stdout")

        try:
            await self._command_loop(session)
        finally:
            self.state = ClientState.TEARDOWN
            results = await session.teardown()
            self.state = ClientState.TERMINAL
            status("Session with remote host is now terminated.", "!")
        return results

    async def _command_loop(self, session: Session) -> None:
        while session.is_alive():
            try:
                cmd = await self._read_command()
            except EOFError:
                break
            cmd = (cmd or "").strip()

            if not session.is_alive():
                break
            try:
                await self.send_command(session, cmd)
            except TransportFailure:
                break

            if cmd.lower() == "exit":
                # Give the remote shell a moment to act on it before we hang up.
                await asyncio.sleep(self.config.exit_grace)
                break
