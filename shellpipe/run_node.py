import argparse
import asyncio
import os
import shlex
from typing import List, Optional

from .errors import TransportFailure
from .node import DEFAULT_PORT, DEFAULT_PREFIX, PipeConfig, ShellPipeClient, ShellPipeServer, status
from .relay import DEFAULT_CHUNK_SIZE

"""
run_node.py — single entry point to run shellpipe as a server or a client.

What you can do here:
- Server (default): spawn a shell and hand it to whoever connects, one peer
  at a time, forever.
- Client (-c):      connect to a server and drive its shell interactively.

Environment fallbacks (handy so the passphrase stays out of `ps` output):
  SHELLPIPE_PASSPHRASE, SHELLPIPE_PORT, SHELLPIPE_PREFIX
"""


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(config: PipeConfig) -> None:
    """Serve shells until the shell itself can't be started."""
    server = ShellPipeServer(config)
    await server.serve_forever()


async def run_client(config: PipeConfig) -> None:
    """One interactive session against a server, then return."""
    client = ShellPipeClient(config)
    try:
        await client.run()
    except TransportFailure as exc:
        status(f'Exception: "{exc}"', "x")


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse options.

    Quick examples:
      Server:          python -m shellpipe.run_node -p secret1
      Server as user:  python -m shellpipe.run_node -p secret1 --username bob
      Client (local):  python -m shellpipe.run_node -c -p secret1
      Client (remote): python -m shellpipe.run_node -c -n 10.0.0.5 -p secret1
    """
    p = argparse.ArgumentParser(prog="shellpipe")
    p.add_argument("-p", "--passphrase", default=os.environ.get("SHELLPIPE_PASSPHRASE"),
                   help="Shared passphrase; encrypts all traffic when set.")
    p.add_argument("-c", "--client", action="store_true",
                   help="Run as the client and drive a remote shell.")
    p.add_argument("-n", "--name", dest="server_name", default=".",
                   help="Server machine to connect to (client only, default: this machine).")
    p.add_argument("--host", default="0.0.0.0", help="Bind address (server only).")
    p.add_argument("--port", type=int, default=int(os.environ.get("SHELLPIPE_PORT", DEFAULT_PORT)))
    p.add_argument("--prefix", default=os.environ.get("SHELLPIPE_PREFIX", DEFAULT_PREFIX),
                   help="Pipe name prefix; must match on both sides.")
    p.add_argument("--username", help="Run the shell as this user (server only).")
    p.add_argument("--shell", help="Shell command line (server only), e.g. 'bash -i'.")
    p.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    p.add_argument("--poll-interval", type=float, default=0.1)
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipeConfig:
    """Turn parsed args into a PipeConfig. Invalid values exit with a message."""
    try:
        return PipeConfig(
            passphrase=args.passphrase or None,
            client=args.client,
            server_name=args.server_name,
            host=args.host,
            port=args.port,
            prefix=args.prefix,
            username=args.username,
            shell=shlex.split(args.shell) if args.shell else None,
            chunk_size=args.chunk_size,
            poll_interval=args.poll_interval,
        )
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}")


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[List[str]] = None) -> None:
    """Dispatch into server or client; keep top-level code very small."""
    config = build_config(parse_args(argv))
    try:
        if config.client:
            asyncio.run(run_client(config))
        else:
            asyncio.run(run_server(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
