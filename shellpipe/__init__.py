"""
shellpipe — an interactive shell over a pair of named pipes, optionally
encrypted with a shared passphrase.

HOW IT PROTECTS TRAFFIC (when a passphrase is set):
- Every chunk gets its own PBKDF2 salt, so its own AES-256-GCM key.
- Fresh random nonce per chunk; the GCM tag catches any tampering.
- The payload is wrapped between two random-length decoys before sealing,
  so identical payloads never produce ciphertexts of the same size.
- Bundles that fail to decrypt are dropped silently (no error oracle).

WHAT IT DOES NOT DO:
- No peer authentication beyond knowing the passphrase.
- No protection against traffic volume/timing analysis.

Run `python -m shellpipe.run_node --help` for the options.
"""
__all__ = ["crypto", "errors", "framing", "host", "messages", "node", "relay", "run_node", "transport"]
