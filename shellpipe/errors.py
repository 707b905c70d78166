"""
errors.py — the small exception family used across shellpipe.

Only two of these ever end a process: HostSpawnFailure on the server and
(indirectly) end-of-input on the client. Everything else is caught inside a
pump and turned into a session teardown.
"""


class ShellPipeError(Exception):
    """Base exception for shellpipe."""


class TransportFailure(ShellPipeError):
    """Connect/accept/read/write error on a pipe channel, or a lost peer."""


class HostSpawnFailure(ShellPipeError):
    """The command host could not be launched."""


class CodecFailure(ShellPipeError):
    """Base for anything that goes wrong turning a bundle line back into bytes."""


class DecryptFailure(CodecFailure):
    """AES-GCM tag mismatch: wrong passphrase, tampered or corrupted data."""


class DecodeFailure(CodecFailure):
    """Bundle or envelope is not the shape we expect (bad JSON, bad Base64, ...)."""
