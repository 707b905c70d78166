import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from . import crypto
from .errors import CodecFailure, DecodeFailure

"""
messages.py — the packet envelope, the encrypted bundle, and encrypt/decrypt.

What this module does:
- Wraps the real payload between two random decoys (the "packet" envelope),
  so the plaintext fed to AES-GCM never has a predictable size.
- Seals the envelope and emits a "bundle" line: ciphertext, nonce, tag and
  salt, Base64url inside compact JSON, no newline anywhere.
- Reverses all of that on the other side, mapping every kind of breakage to
  DecodeFailure (shape) or DecryptFailure (authentication).

Wire shape (one per transport line):
    {"ciphertext":"..","kind":"bundle","nonce":"..","salt":"..","tag":".."}
Sealed plaintext:
    {"kind":"packet","payload":"..","prefix":"..","suffix":".."}
"""

BUNDLE_KIND = "bundle"
PACKET_KIND = "packet"


def canonical_json(obj: Dict[str, Any]) -> str:
    """Sorted keys, no whitespace variation. ensure_ascii keeps it one line."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _load_tagged(data: Union[str, bytes], kind: str) -> Dict[str, Any]:
    """Parse JSON and check the kind tag; anything off is a DecodeFailure."""
    try:
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8")
        parsed = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeFailure(f"Invalid {kind} JSON") from exc

    if not isinstance(parsed, dict):
        raise DecodeFailure(f"{kind} must be a JSON object")
    if parsed.get("kind") != kind:
        raise DecodeFailure(f"Expected kind={kind!r}")
    return parsed


def _field(obj: Dict[str, Any], name: str) -> bytes:
    value = obj.get(name)
    if not isinstance(value, str):
        raise DecodeFailure(f"Missing or non-string field {name!r}")
    try:
        return crypto.b64url_decode(value)
    except ValueError as exc:  # binascii.Error is a ValueError
        raise DecodeFailure(f"Field {name!r} is not valid Base64url") from exc


@dataclass
class EncryptedPacket:
    """
    Plaintext envelope that gets sealed: decoy prefix, payload, decoy suffix.

    Only `payload` matters to the receiver; the decoys are thrown away.
    """

    prefix: bytes
    payload: bytes
    suffix: bytes

    @classmethod
    def wrap(cls, payload: bytes, padding: Optional[crypto.PaddingStrategy] = None) -> "EncryptedPacket":
        """Surround `payload` with two independently drawn decoys."""
        padding = padding or crypto.DEFAULT_PADDING
        return cls(prefix=padding.draw(), payload=bytes(payload), suffix=padding.draw())

    def to_json(self) -> str:
        return canonical_json({
            "kind": PACKET_KIND,
            "prefix": crypto.b64url_encode(self.prefix),
            "payload": crypto.b64url_encode(self.payload),
            "suffix": crypto.b64url_encode(self.suffix),
        })

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "EncryptedPacket":
        parsed = _load_tagged(data, PACKET_KIND)
        return cls(
            prefix=_field(parsed, "prefix"),
            payload=_field(parsed, "payload"),
            suffix=_field(parsed, "suffix"),
        )


@dataclass
class EncryptedBundle:
    """
    What actually goes over the wire: the sealed envelope plus everything the
    receiver needs (besides the passphrase) to open it.

    Attributes:
        ciphertext: AES-GCM ciphertext of the serialized EncryptedPacket.
        nonce: 96-bit one-time nonce.
        tag: 128-bit GCM authentication tag.
        salt: PBKDF2 salt the key was derived with.
    """

    ciphertext: bytes
    nonce: bytes
    tag: bytes
    salt: bytes

    def to_json(self) -> str:
        return canonical_json({
            "kind": BUNDLE_KIND,
            "ciphertext": crypto.b64url_encode(self.ciphertext),
            "nonce": crypto.b64url_encode(self.nonce),
            "tag": crypto.b64url_encode(self.tag),
            "salt": crypto.b64url_encode(self.salt),
        })

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "EncryptedBundle":
        """
        Deserialize a bundle line. Unknown fields are ignored so a newer peer
        can add things without breaking us.

        Raises:
            DecodeFailure: invalid JSON, wrong kind tag, missing/bad fields.
        """
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).rstrip(b"\r\n")
        else:
            data = data.rstrip("\r\n")
        parsed = _load_tagged(data, BUNDLE_KIND)
        return cls(
            ciphertext=_field(parsed, "ciphertext"),
            nonce=_field(parsed, "nonce"),
            tag=_field(parsed, "tag"),
            salt=_field(parsed, "salt"),
        )


# ---------------------------
# Encryption & Decryption API
# ---------------------------

def encrypt(payload: bytes, passphrase: str, padding: Optional[crypto.PaddingStrategy] = None) -> str:
    """
    Encrypt `payload` into a single bundle line (no trailing newline).

    Fresh salt (hence fresh key), fresh nonce and fresh decoys every call, so
    two bundles for the same payload never look alike.
    """
    key, salt = crypto.derive_key(passphrase)
    packet = EncryptedPacket.wrap(payload, padding)
    nonce = crypto.new_nonce()
    ciphertext, tag = crypto.seal(key, nonce, packet.to_json().encode("utf-8"))
    return EncryptedBundle(ciphertext=ciphertext, nonce=nonce, tag=tag, salt=salt).to_json()


def decrypt(line: Union[str, bytes], passphrase: str) -> bytes:
    """
    Reverse of encrypt(). Returns the payload with the decoys stripped.

    Raises:
        DecodeFailure: the bundle or the inner envelope is malformed.
        DecryptFailure: authentication failed (wrong passphrase, tampering).
    """
    bundle = EncryptedBundle.from_json(line)
    key, _ = crypto.derive_key(passphrase, bundle.salt)
    plaintext = crypto.open_sealed(key, bundle.nonce, bundle.ciphertext, bundle.tag)
    return EncryptedPacket.from_json(plaintext).payload


def try_decrypt(line: Union[str, bytes], passphrase: str) -> Optional[bytes]:
    """
    decrypt() for the relay: any codec failure means "drop this unit".

    Nothing is logged or raised here; telling a remote peer which bundles
    failed and why would hand them an oracle.
    """
    try:
        return decrypt(line, passphrase)
    except CodecFailure:
        return None


def encrypt_text(value: str, passphrase: str, padding: Optional[crypto.PaddingStrategy] = None) -> str:
    """UTF-8 wrapper around encrypt()."""
    return encrypt(value.encode("utf-8"), passphrase, padding)


def decrypt_text(line: Union[str, bytes], passphrase: str) -> str:
    """UTF-8 wrapper around decrypt(). Undecodable bytes are replaced."""
    return decrypt(line, passphrase).decode("utf-8", errors="replace")
