"""
Wire delimiting for serialized frames.

A frame (nonce | tag | ciphertext) carries no length of its own, so the
receiver needs the transport to tell it where one frame ends:

- datagram:        one read == one frame. Only correct over transports that
                   preserve message boundaries (the reference behavior).
- length-prefixed: 4-byte big-endian length + frame. Correct over any byte
                   stream; partial and coalesced reads are reassembled.
"""

import struct
from typing import List

from ..errors import StreamError


DATAGRAM = "datagram"
LENGTH_PREFIXED = "length-prefixed"
FRAMING_MODES = (DATAGRAM, LENGTH_PREFIXED)

MAX_FRAME_SIZE = 1024 * 1024  # 1 MiB hard limit
LENGTH_STRUCT = struct.Struct(">I")


class DatagramFraming:
    """Frames are sent as-is; every read is taken to be exactly one frame."""

    name = DATAGRAM

    def encode(self, frame_bytes: bytes) -> bytes:
        return bytes(frame_bytes)

    def decoder(self) -> 'DatagramDecoder':
        return DatagramDecoder()


class DatagramDecoder:

    def feed(self, data: bytes) -> List[bytes]:
        return [bytes(data)] if data else []


class LengthPrefixedFraming:
    """Each frame is preceded by its length as an unsigned 32-bit integer."""

    name = LENGTH_PREFIXED

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size

    def encode(self, frame_bytes: bytes) -> bytes:
        if len(frame_bytes) > self.max_frame_size:
            raise ValueError(f"Frame too large: {len(frame_bytes)} > {self.max_frame_size}")
        return LENGTH_STRUCT.pack(len(frame_bytes)) + bytes(frame_bytes)

    def decoder(self) -> 'LengthPrefixedDecoder':
        return LengthPrefixedDecoder(self.max_frame_size)


class LengthPrefixedDecoder:
    """
    Incremental decoder over a growable buffer.

    feed() may be given any slice of the stream: half a length prefix, a
    frame and a half, or several frames at once. Complete frames come out
    in order; the remainder waits for the next read.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self._buffer = bytearray()
        self._max_frame_size = max_frame_size

    @property
    def pending(self) -> int:
        """Bytes buffered but not yet part of a complete frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[bytes]:
        """
        Add bytes read from the stream and return every completed frame.

        Raises:
            StreamError: If a length prefix exceeds the maximum frame size.
                The stream cannot be resynchronized after that.
        """
        self._buffer.extend(data)
        frames = []

        while len(self._buffer) >= LENGTH_STRUCT.size:
            (length,) = LENGTH_STRUCT.unpack_from(self._buffer)
            if length > self._max_frame_size:
                raise StreamError(f"Declared frame length {length} exceeds {self._max_frame_size}")

            end = LENGTH_STRUCT.size + length
            if len(self._buffer) < end:
                break

            frames.append(bytes(self._buffer[LENGTH_STRUCT.size:end]))
            del self._buffer[:end]

        return frames


def create_framing(mode: str = LENGTH_PREFIXED):
    """Build the framing named by the `framing` setting."""
    if mode == DATAGRAM:
        return DatagramFraming()
    if mode == LENGTH_PREFIXED:
        return LengthPrefixedFraming()
    raise ValueError(f"Unknown framing mode: {mode!r}")
