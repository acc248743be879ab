"""
Unit tests for wire framing.

Tests:
- Datagram pass-through
- Length-prefixed encoding
- Reassembly of split and coalesced frames
- Oversized length rejection
"""

import struct

import pytest

from securecomm.errors import StreamError
from securecomm.messaging.framing import (
    DatagramFraming,
    LengthPrefixedFraming,
    MAX_FRAME_SIZE,
    create_framing,
)


class TestDatagramFraming:
    """Tests for one-read-one-frame delimiting."""

    def test_encode_is_identity(self):
        """Frames go on the wire unchanged."""
        assert DatagramFraming().encode(b"abc") == b"abc"

    def test_each_read_is_one_frame(self):
        """Every non-empty read becomes exactly one frame."""
        decoder = DatagramFraming().decoder()
        assert decoder.feed(b"first") == [b"first"]
        assert decoder.feed(b"second") == [b"second"]
        assert decoder.feed(b"") == []


class TestLengthPrefixedFraming:
    """Tests for 4-byte length-prefixed delimiting."""

    def test_encode_prefix(self):
        """Prefix is the big-endian frame length."""
        data = LengthPrefixedFraming().encode(b"hello")
        assert data == struct.pack(">I", 5) + b"hello"

    def test_split_frame_reassembled(self):
        """A frame delivered one byte at a time comes out once, whole."""
        framing = LengthPrefixedFraming()
        decoder = framing.decoder()
        wire = framing.encode(b"split across reads")

        out = []
        for i in range(len(wire)):
            out.extend(decoder.feed(wire[i:i + 1]))

        assert out == [b"split across reads"]
        assert decoder.pending == 0

    def test_coalesced_frames_split(self):
        """Several frames in one read come out in order."""
        framing = LengthPrefixedFraming()
        decoder = framing.decoder()
        wire = framing.encode(b"one") + framing.encode(b"") + framing.encode(b"three")

        assert decoder.feed(wire) == [b"one", b"", b"three"]

    def test_partial_tail_kept(self):
        """Leftover bytes wait for the next read."""
        framing = LengthPrefixedFraming()
        decoder = framing.decoder()
        wire = framing.encode(b"first") + framing.encode(b"second")

        assert decoder.feed(wire[:12]) == [b"first"]
        assert decoder.pending == 3
        assert decoder.feed(wire[12:]) == [b"second"]

    def test_oversized_length_rejected(self):
        """A declared length over the limit raises StreamError."""
        decoder = LengthPrefixedFraming().decoder()
        with pytest.raises(StreamError):
            decoder.feed(struct.pack(">I", MAX_FRAME_SIZE + 1))

    def test_oversized_encode_rejected(self):
        """The sender refuses frames over the limit."""
        with pytest.raises(ValueError):
            LengthPrefixedFraming(max_frame_size=8).encode(b"x" * 9)


class TestCreateFraming:
    """Tests for the framing factory."""

    def test_known_modes(self):
        """Mode names map to framings."""
        assert isinstance(create_framing("datagram"), DatagramFraming)
        assert isinstance(create_framing("length-prefixed"), LengthPrefixedFraming)

    def test_unknown_mode(self):
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError):
            create_framing("newline")
