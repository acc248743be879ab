"""
Unit tests for the frame codec.

Tests:
- AES-256-GCM seal / open
- Wrong key and modified frame detection
- Short frame rejection before decryption
- Random and counter nonce sources
"""

import os
from unittest import mock

import pytest

from securecomm.errors import AuthTagError, MalformedFrameError, NonceExhaustedError
from securecomm.messaging.frame import (
    COUNTER_MAX,
    HEADER_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    CounterNonceSource,
    Frame,
    FrameCodec,
    RandomNonceSource,
    create_nonce_source,
    open_frame,
    seal,
)


class TestSealOpen:
    """Tests for sealing and opening frames."""

    def test_seal_open_roundtrip(self):
        """Opening a sealed frame returns the plaintext."""
        key = os.urandom(32)
        frame = seal(key, b"Hello, World!")
        assert open_frame(key, frame) == b"Hello, World!"

    def test_empty_plaintext(self):
        """Empty plaintext gives a header-only frame."""
        key = os.urandom(32)
        frame = seal(key, b"")
        assert len(frame.to_bytes()) == HEADER_SIZE
        assert open_frame(key, frame.to_bytes()) == b""

    def test_ciphertext_length_matches_plaintext(self):
        """GCM adds no padding; the tag lives in its own field."""
        key = os.urandom(32)
        frame = seal(key, b"x" * 100)
        assert len(frame.nonce) == NONCE_SIZE
        assert len(frame.tag) == TAG_SIZE
        assert len(frame.ciphertext) == 100
        assert len(frame) == HEADER_SIZE + 100

    def test_wire_layout(self):
        """Serialized frame is nonce | tag | ciphertext."""
        key = os.urandom(32)
        frame = seal(key, b"layout")
        data = frame.to_bytes()
        assert data[:12] == frame.nonce
        assert data[12:28] == frame.tag
        assert data[28:] == frame.ciphertext

    def test_open_accepts_raw_bytes(self):
        """open() takes a Frame or its bytes."""
        codec = FrameCodec(os.urandom(32))
        frame = codec.seal(b"raw")
        assert codec.open(frame) == codec.open(frame.to_bytes()) == b"raw"

    def test_hex_serialization(self):
        """Hex form parses back to the same frame."""
        key = os.urandom(32)
        frame = seal(key, b"hex")
        assert Frame.from_hex(frame.to_hex()) == frame

    def test_key_size_enforced(self):
        """Keys other than 32 bytes are rejected."""
        with pytest.raises(ValueError):
            FrameCodec(os.urandom(16))


class TestTamperDetection:
    """Tests for authentication failures."""

    def test_wrong_key_fails(self):
        """Opening with a different key raises AuthTagError."""
        frame = seal(os.urandom(32), b"Secret")
        with pytest.raises(AuthTagError):
            open_frame(os.urandom(32), frame)

    def test_modified_ciphertext_fails(self):
        """Flipping a ciphertext bit is detected."""
        key = os.urandom(32)
        data = bytearray(seal(key, b"Original message").to_bytes())
        data[HEADER_SIZE] ^= 0x01
        with pytest.raises(AuthTagError):
            open_frame(key, bytes(data))

    def test_modified_tag_fails(self):
        """Flipping a tag bit is detected."""
        key = os.urandom(32)
        data = bytearray(seal(key, b"Original message").to_bytes())
        data[NONCE_SIZE] ^= 0x80
        with pytest.raises(AuthTagError):
            open_frame(key, bytes(data))

    def test_truncated_ciphertext_fails(self):
        """Dropping trailing bytes is detected."""
        key = os.urandom(32)
        data = seal(key, b"Original message").to_bytes()
        with pytest.raises(AuthTagError):
            open_frame(key, data[:-1])

    def test_no_plaintext_on_failure(self):
        """No candidate plaintext is ever returned on failure."""
        frame = seal(os.urandom(32), b"Secret")
        codec = FrameCodec(os.urandom(32))
        result = None
        with pytest.raises(AuthTagError):
            result = codec.open(frame)
        assert result is None


class TestShortFrames:
    """Tests for frames shorter than the header."""

    @pytest.mark.parametrize("size", [0, 1, 12, 27])
    def test_short_input_rejected(self, size):
        """Anything under 28 bytes raises MalformedFrameError."""
        with pytest.raises(MalformedFrameError):
            open_frame(os.urandom(32), os.urandom(size))

    def test_cipher_not_invoked_for_short_input(self):
        """Short input never reaches the cipher."""
        codec = FrameCodec(os.urandom(32))
        codec._aesgcm = mock.Mock()
        with pytest.raises(MalformedFrameError):
            codec.open(b"\x00" * 27)
        codec._aesgcm.decrypt.assert_not_called()

    def test_frame_field_sizes_checked(self):
        """Frame() rejects a bad nonce or tag size."""
        with pytest.raises(MalformedFrameError):
            Frame(nonce=b"\x00" * 11, tag=b"\x00" * 16, ciphertext=b"")
        with pytest.raises(MalformedFrameError):
            Frame(nonce=b"\x00" * 12, tag=b"\x00" * 15, ciphertext=b"")


class TestNonceSources:
    """Tests for nonce generation."""

    def test_random_nonces_unique(self):
        """Random nonces do not repeat."""
        source = RandomNonceSource()
        nonces = {source.next_nonce() for _ in range(10000)}
        assert len(nonces) == 10000

    def test_seal_uses_fresh_nonce(self):
        """Sealing the same plaintext twice gives different frames."""
        codec = FrameCodec(os.urandom(32))
        frame1 = codec.seal(b"Same message")
        frame2 = codec.seal(b"Same message")
        assert frame1.nonce != frame2.nonce
        assert frame1.ciphertext != frame2.ciphertext

    def test_counter_nonces_increase(self):
        """Counter nonces share the prefix and count up."""
        source = CounterNonceSource(prefix=b"\x01\x02\x03\x04")
        first, second = source.next_nonce(), source.next_nonce()
        assert first[:4] == second[:4] == b"\x01\x02\x03\x04"
        assert int.from_bytes(first[4:], "big") == 0
        assert int.from_bytes(second[4:], "big") == 1
        assert len(first) == NONCE_SIZE

    def test_counter_exhaustion(self):
        """The counter raises instead of wrapping."""
        source = CounterNonceSource(start=COUNTER_MAX)
        source.next_nonce()
        with pytest.raises(NonceExhaustedError):
            source.next_nonce()

    def test_counter_prefix_length(self):
        """Prefix must be 4 bytes."""
        with pytest.raises(ValueError):
            CounterNonceSource(prefix=b"\x00" * 3)

    def test_codec_with_counter_source(self):
        """Frames sealed with counter nonces open normally."""
        key = os.urandom(32)
        codec = FrameCodec(key, CounterNonceSource())
        assert open_frame(key, codec.seal(b"counted")) == b"counted"

    def test_create_nonce_source(self):
        """Strategy names map to sources."""
        assert isinstance(create_nonce_source("random"), RandomNonceSource)
        assert isinstance(create_nonce_source("counter"), CounterNonceSource)
        with pytest.raises(ValueError):
            create_nonce_source("sequential")
