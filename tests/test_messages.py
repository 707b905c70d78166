"""Unit tests for the packet envelope, the bundle wire format and encrypt/decrypt.

Tests cover:
- Round-trip correctness for text and binary payloads
- Freshness: identical payloads never produce identical bundles
- Wrong passphrase and tampering are DecryptFailure, never wrong plaintext
- Malformed bundles/envelopes are DecodeFailure
- try_decrypt() is the silent-drop path used by the relay
"""

import json

import pytest

from shellpipe import crypto
from shellpipe import messages as m
from shellpipe.errors import CodecFailure, DecodeFailure, DecryptFailure


def _mutate(line: str, field: str) -> str:
    """Flip one byte of a bundle field and re-serialize."""
    obj = json.loads(line)
    raw = bytearray(crypto.b64url_decode(obj[field]))
    raw[0] ^= 0x01
    obj[field] = crypto.b64url_encode(bytes(raw))
    return json.dumps(obj)


class TestRoundTrip:
    @pytest.mark.parametrize("payload", [b"whoami\n", b"", bytes(range(256)), "h\u00e9llo \u2713".encode("utf-8")])
    def test_decrypt_recovers_payload(self, payload: bytes) -> None:
        assert m.decrypt(m.encrypt(payload, "secret1"), "secret1") == payload

    def test_text_wrappers(self) -> None:
        line = m.encrypt_text("dir C:\\\n", "secret1")
        assert m.decrypt_text(line, "secret1") == "dir C:\\\n"

    def test_accepts_bytes_with_trailing_newline(self) -> None:
        line = m.encrypt(b"x", "secret1").encode("ascii") + b"\n"
        assert m.decrypt(line, "secret1") == b"x"

    def test_custom_padding_strategy(self) -> None:
        line = m.encrypt(b"x", "secret1", crypto.FixedPadding(0))
        assert m.decrypt(line, "secret1") == b"x"


class TestFreshness:
    def test_two_bundles_for_same_payload_differ(self) -> None:
        a = m.EncryptedBundle.from_json(m.encrypt(b"ls\n", "secret1"))
        b = m.EncryptedBundle.from_json(m.encrypt(b"ls\n", "secret1"))
        assert a.nonce != b.nonce
        assert a.salt != b.salt
        assert a.ciphertext != b.ciphertext

    def test_ciphertext_length_varies(self) -> None:
        lengths = {
            len(m.EncryptedBundle.from_json(m.encrypt(b"A", "secret1")).ciphertext)
            for _ in range(20)
        }
        assert len(lengths) > 1

    def test_bundle_is_a_single_line(self) -> None:
        line = m.encrypt(b"line1\nline2\n", "secret1")
        assert "\n" not in line
        assert "\r" not in line


class TestFailures:
    def test_wrong_passphrase_is_decrypt_failure(self) -> None:
        line = m.encrypt(b"whoami\n", "secret1")
        with pytest.raises(DecryptFailure):
            m.decrypt(line, "secret2")

    @pytest.mark.parametrize("field", ["ciphertext", "tag", "nonce", "salt"])
    def test_tampering_is_decrypt_failure(self, field: str) -> None:
        line = m.encrypt(b"whoami\n", "secret1")
        with pytest.raises(DecryptFailure):
            m.decrypt(_mutate(line, field), "secret1")

    @pytest.mark.parametrize("line", [
        "",
        "not json",
        "[1, 2, 3]",
        '{"kind": "packet"}',
        '{"kind": "bundle", "ciphertext": "AA", "nonce": "AA", "tag": "AA"}',
        '{"kind": "bundle", "ciphertext": 1, "nonce": "AA", "tag": "AA", "salt": "AA"}',
        '{"kind": "bundle", "ciphertext": "!!!", "nonce": "AA", "tag": "AA", "salt": "AA"}',
    ])
    def test_malformed_bundle_is_decode_failure(self, line: str) -> None:
        with pytest.raises(DecodeFailure):
            m.decrypt(line, "secret1")

    def test_malformed_envelope_is_decode_failure(self) -> None:
        """A correctly sealed blob that isn't a packet envelope."""
        key, salt = crypto.derive_key("secret1")
        nonce = crypto.new_nonce()
        ciphertext, tag = crypto.seal(key, nonce, b'{"kind": "nope"}')
        line = m.EncryptedBundle(ciphertext, nonce, tag, salt).to_json()
        with pytest.raises(DecodeFailure):
            m.decrypt(line, "secret1")

    def test_failures_share_a_base(self) -> None:
        assert issubclass(DecryptFailure, CodecFailure)
        assert issubclass(DecodeFailure, CodecFailure)


class TestTryDecrypt:
    def test_returns_payload(self) -> None:
        assert m.try_decrypt(m.encrypt(b"ok", "secret1"), "secret1") == b"ok"

    @pytest.mark.parametrize("line", ["", "garbage", "{}"])
    def test_returns_none_on_decode_failure(self, line: str) -> None:
        assert m.try_decrypt(line, "secret1") is None

    def test_returns_none_on_wrong_passphrase(self) -> None:
        assert m.try_decrypt(m.encrypt(b"ok", "secret1"), "other") is None


class TestEnvelope:
    def test_packet_json_roundtrip(self) -> None:
        packet = m.EncryptedPacket(prefix=b"\x00\x01", payload=b"cmd", suffix=b"\xff")
        assert m.EncryptedPacket.from_json(packet.to_json()) == packet

    def test_wrap_uses_independent_decoys(self) -> None:
        padding = crypto.UniformPadding(1, 64)
        packets = [m.EncryptedPacket.wrap(b"x", padding) for _ in range(30)]
        assert all(1 <= len(p.prefix) <= 64 and 1 <= len(p.suffix) <= 64 for p in packets)
        assert any(len(p.prefix) != len(p.suffix) for p in packets)

    def test_unknown_bundle_fields_ignored(self) -> None:
        obj = json.loads(m.encrypt(b"fwd", "secret1"))
        obj["future"] = "field"
        assert m.decrypt(json.dumps(obj), "secret1") == b"fwd"
