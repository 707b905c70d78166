"""
crypto.py — passphrase key derivation, decoy padding and AES-GCM helpers.

Why this exists:
- Keep all the primitive crypto in one place so the codec (messages.py) can
  call `derive_key/seal/open_sealed` without worrying about sizes or padding.
- Use URL-safe Base64 without '=' padding so values drop cleanly into a
  single JSON line (the relay is line-oriented, so no '\\n' is allowed).
- Never keep key material around: every call derives, uses and drops.

Notes:
- PBKDF2-HMAC-SHA1 with 1000 iterations. That is deliberately cheap: shell
  output is encrypted chunk by chunk, each chunk with a fresh salt. It only
  has to be consistent between peers, not hardened against brute force.
- AES-256-GCM with a random 96-bit nonce and a 128-bit tag.
"""

import base64
import os
import secrets
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecodeFailure, DecryptFailure

KEY_SIZE = 32          # 256-bit AES key
SALT_SIZE = 32         # 256-bit salt
NONCE_SIZE = 12        # GCM nonce
TAG_SIZE = 16          # GCM tag
KDF_ITERATIONS = 1000

PADDING_MIN = 32
PADDING_MAX = 1024

# -----------------------------
# Base64 URL helpers (no padding)
# -----------------------------

def b64url_encode(data: bytes) -> str:
    """URL-safe Base64 without '=' padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Decode our URL-safe, no-padding Base64 back to bytes."""
    # Add the minimal padding back so Python's decoder is happy.
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len)


# --------------
# Key derivation
# --------------

def derive_key(passphrase: str, salt: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    """
    Turn a passphrase (+ salt) into a 256-bit AES key.

    If no salt is given a fresh random 256-bit one is drawn. Returns
    (key, salt) so the caller can ship the salt next to the ciphertext and
    the receiver can rebuild the exact same key from it.
    """
    if not isinstance(passphrase, str):
        raise TypeError("passphrase must be str")
    if salt is None:
        salt = os.urandom(SALT_SIZE)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=KEY_SIZE,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8")), salt


# -----------------------
# Decoy padding strategies
# -----------------------

class PaddingStrategy:
    """
    Produces the random filler that surrounds a payload inside the envelope.

    Subclasses pick the length (draw_length); the content is always random.
    """

    def draw_length(self) -> int:
        raise NotImplementedError

    def draw(self) -> bytes:
        return os.urandom(self.draw_length())


class UniformPadding(PaddingStrategy):
    """
    Random length drawn uniformly in [min_size, max_size], random content.

    Two independent draws (prefix and suffix) per message mean the envelope
    size changes every time, even for identical payloads.
    """

    def __init__(self, min_size: int = PADDING_MIN, max_size: int = PADDING_MAX) -> None:
        if min_size < 0 or max_size < min_size:
            raise ValueError(f"Invalid padding bounds: [{min_size}, {max_size}]")
        self.min_size = min_size
        self.max_size = max_size

    def draw_length(self) -> int:
        return self.min_size + secrets.randbelow(self.max_size - self.min_size + 1)

    def __repr__(self) -> str:
        return f"UniformPadding({self.min_size}, {self.max_size})"


class FixedPadding(PaddingStrategy):
    """Always the same length (content still random). Handy for tools/tests."""

    def __init__(self, size: int = 0) -> None:
        if size < 0:
            raise ValueError("Padding size must be >= 0")
        self.size = size

    def draw_length(self) -> int:
        return self.size


DEFAULT_PADDING = UniformPadding()


# ------------------
# AES-GCM seal / open
# ------------------

def new_nonce() -> bytes:
    """One-time random nonce. Collisions under the same key are negligible
    because every message also gets its own salt (hence its own key)."""
    return os.urandom(NONCE_SIZE)


def seal(key: bytes, nonce: bytes, plaintext: bytes) -> Tuple[bytes, bytes]:
    """
    AES-GCM encrypt. Returns (ciphertext, tag) as separate values.

    `cryptography` hands back ciphertext||tag; we split it so the bundle
    carries the tag as its own field.
    """
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    return sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]


def open_sealed(key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    """
    Reverse of seal(). Raises DecryptFailure on authentication mismatch and
    DecodeFailure when the nonce/tag are not even the right size.
    """
    if len(nonce) != NONCE_SIZE:
        raise DecodeFailure(f"Bad nonce size: {len(nonce)}")
    if len(tag) != TAG_SIZE:
        raise DecodeFailure(f"Bad tag size: {len(tag)}")
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as exc:
        # No detail on purpose; callers drop the unit silently anyway.
        raise DecryptFailure("Authentication failed") from exc
