"""
Frame Codec

Seals and opens single authenticated messages with AES-256-GCM.

Wire format (fixed header, no length field):
    [nonce (12 bytes) | tag (16 bytes) | ciphertext (variable)]

Security features:
- Fresh nonce per frame, never reused under one key
- No associated data
- Tag verified before any plaintext is returned
- Frames shorter than the header are rejected before decryption
"""

import secrets
import struct
import threading
from typing import Optional, Union
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import AuthTagError, MalformedFrameError, NonceExhaustedError, ResourceError


# Constants
KEY_SIZE = 32           # 256 bits
NONCE_SIZE = 12         # 96 bits for GCM
TAG_SIZE = 16           # 128 bits for GCM tag
HEADER_SIZE = NONCE_SIZE + TAG_SIZE

COUNTER_PREFIX_SIZE = 4
COUNTER_MAX = 2 ** 64 - 1


def generate_nonce() -> bytes:
    """
    Generate a random nonce for AES-GCM.

    CRITICAL: Never reuse a nonce with the same key!
    """
    return secrets.token_bytes(NONCE_SIZE)


class RandomNonceSource:
    """
    96-bit random nonces.

    Collision probability stays negligible for the message volumes of an
    interactive channel.
    """

    def next_nonce(self) -> bytes:
        return generate_nonce()


class CounterNonceSource:
    """
    Deterministic nonces: 4-byte per-direction prefix + 64-bit counter.

    Each direction of a channel must use a distinct prefix. The counter
    never wraps; NonceExhaustedError is raised instead.
    """

    def __init__(self, prefix: bytes = None, start: int = 0):
        if prefix is None:
            prefix = secrets.token_bytes(COUNTER_PREFIX_SIZE)
        if len(prefix) != COUNTER_PREFIX_SIZE:
            raise ValueError(f"Prefix must be {COUNTER_PREFIX_SIZE} bytes")
        if not 0 <= start <= COUNTER_MAX + 1:
            raise ValueError("Counter start out of range")
        self._prefix = bytes(prefix)
        self._counter = start
        self._lock = threading.Lock()

    @property
    def prefix(self) -> bytes:
        return self._prefix

    def next_nonce(self) -> bytes:
        with self._lock:
            if self._counter > COUNTER_MAX:
                raise NonceExhaustedError("Nonce counter exhausted; re-key the session")
            value = self._counter
            self._counter += 1
        return self._prefix + struct.pack(">Q", value)


def create_nonce_source(strategy: str = "random", prefix: Optional[bytes] = None):
    """
    Build the nonce source named by the `nonce_strategy` setting.

    Args:
        strategy: "random" or "counter"
        prefix: Counter prefix for this direction (Session.nonce_prefix);
            random if None
    """
    if strategy == "random":
        return RandomNonceSource()
    if strategy == "counter":
        return CounterNonceSource(prefix)
    raise ValueError(f"Unknown nonce strategy: {strategy!r}")


@dataclass(frozen=True)
class Frame:
    """
    One wire-encoded authenticated message.

    Format: [nonce | tag | ciphertext]
    """
    nonce: bytes          # 12 bytes
    tag: bytes            # 16 bytes
    ciphertext: bytes     # Variable length

    def __post_init__(self):
        if len(self.nonce) != NONCE_SIZE:
            raise MalformedFrameError(f"Nonce must be {NONCE_SIZE} bytes, got {len(self.nonce)}")
        if len(self.tag) != TAG_SIZE:
            raise MalformedFrameError(f"Tag must be {TAG_SIZE} bytes, got {len(self.tag)}")

    def __len__(self) -> int:
        return HEADER_SIZE + len(self.ciphertext)

    def to_bytes(self) -> bytes:
        """Serialize as nonce || tag || ciphertext."""
        return self.nonce + self.tag + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Frame':
        """
        Deserialize from bytes.

        Raises:
            MalformedFrameError: If data is shorter than the header
        """
        if len(data) < HEADER_SIZE:
            raise MalformedFrameError(
                f"Frame of {len(data)} bytes is shorter than the {HEADER_SIZE}-byte header"
            )
        data = bytes(data)
        return cls(
            nonce=data[:NONCE_SIZE],
            tag=data[NONCE_SIZE:HEADER_SIZE],
            ciphertext=data[HEADER_SIZE:],
        )

    def to_hex(self) -> str:
        """Serialize to hex string."""
        return self.to_bytes().hex()

    @classmethod
    def from_hex(cls, hex_str: str) -> 'Frame':
        """Deserialize from hex string."""
        return cls.from_bytes(bytes.fromhex(hex_str))


class FrameCodec:
    """
    AES-256-GCM frame sealing bound to one session key.

    The key is read-only after construction, so one codec can be shared by
    the inbound and outbound activities of a channel.
    """

    def __init__(self, session_key: bytes, nonce_source=None):
        """
        Args:
            session_key: 256-bit (32-byte) key
            nonce_source: Object with next_nonce(); random nonces if None
        """
        if len(session_key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes")
        self._aesgcm = AESGCM(bytes(session_key))
        self._nonces = nonce_source or RandomNonceSource()

    def seal(self, plaintext: bytes) -> Frame:
        """
        Encrypt plaintext into a fresh Frame.

        Args:
            plaintext: Data to encrypt (may be empty)

        Returns:
            Frame with ciphertext the same length as plaintext
        """
        nonce = self._nonces.next_nonce()
        try:
            # GCM appends the tag to the ciphertext
            sealed = self._aesgcm.encrypt(nonce, bytes(plaintext), None)
        except MemoryError as exc:
            raise ResourceError("Out of memory while sealing frame") from exc

        return Frame(nonce=nonce, tag=sealed[-TAG_SIZE:], ciphertext=sealed[:-TAG_SIZE])

    def open(self, frame: Union[Frame, bytes]) -> bytes:
        """
        Verify and decrypt a Frame or its serialized bytes.

        Raises:
            MalformedFrameError: If raw input is shorter than the header
            AuthTagError: If tag verification fails
        """
        if not isinstance(frame, Frame):
            frame = Frame.from_bytes(frame)

        try:
            return self._aesgcm.decrypt(frame.nonce, frame.ciphertext + frame.tag, None)
        except InvalidTag as exc:
            raise AuthTagError(
                "Authentication tag mismatch. Possibly wrong key, nonce, or corrupted data."
            ) from exc
        except MemoryError as exc:
            raise ResourceError("Out of memory while opening frame") from exc


def seal(session_key: bytes, plaintext: bytes,
         nonce_source: Optional[object] = None) -> Frame:
    """One-shot seal under session_key."""
    return FrameCodec(session_key, nonce_source).seal(plaintext)


def open_frame(session_key: bytes, frame: Union[Frame, bytes]) -> bytes:
    """One-shot open under session_key."""
    return FrameCodec(session_key).open(frame)
