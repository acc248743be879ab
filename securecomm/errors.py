"""
Error Taxonomy

Every failure raised by SecureComm derives from SecureCommError and carries:
- a numeric code (ErrorCode, stable across releases)
- a disposition telling the caller what happens next

Dispositions:
    ABORT_SESSION    - establishment fails, no Session is returned
    ABORT_OPERATION  - the operation in progress fails, nothing partial stays live
    DROP_MESSAGE     - the offending message is discarded, the channel continues
    CLOSE_CHANNEL    - both directions are torn down and the stream is closed

Per-message cryptographic errors never close the channel.
Stream errors always do.
"""

from enum import Enum, IntEnum


class ErrorCode(IntEnum):
    """Standardized error codes."""
    SUCCESS = 0
    INIT = -1
    SOCKET = -2
    ADDRESS = -3
    CONNECT = -4
    SEND = -7
    RECV = -8
    MEMORY = -9
    ENCRYPT = -10
    DECRYPT = -11
    COMPRESS = -12
    DECOMPRESS = -13
    SESSION = -14
    CONFIG = -15
    LOG = -16


class Disposition(Enum):
    """What the caller does after a failure."""
    ABORT_SESSION = "abort_session"
    ABORT_OPERATION = "abort_operation"
    DROP_MESSAGE = "drop_message"
    CLOSE_CHANNEL = "close_channel"


class SecureCommError(Exception):
    """Base class for all SecureComm failures."""

    code: ErrorCode = ErrorCode.INIT
    disposition: Disposition = Disposition.ABORT_OPERATION

    def __init__(self, message: str = "", code: ErrorCode = None):
        super().__init__(message)
        if code is not None:
            self.code = code


# ----------------------------------------------------------------------------
# Session establishment
# ----------------------------------------------------------------------------

class AuthError(SecureCommError):
    """Credentials did not match the trust store."""
    code = ErrorCode.SESSION
    disposition = Disposition.ABORT_SESSION


class KeyAgreementError(SecureCommError):
    """Group, parameter or key derivation failure during key agreement."""
    code = ErrorCode.SESSION
    disposition = Disposition.ABORT_SESSION


# ----------------------------------------------------------------------------
# Per-message
# ----------------------------------------------------------------------------

class MalformedFrameError(SecureCommError):
    """Frame is shorter than the nonce + tag header or has bad field sizes."""
    code = ErrorCode.DECRYPT
    disposition = Disposition.DROP_MESSAGE


class AuthTagError(SecureCommError):
    """
    AEAD tag verification failed.

    Wrong key, corrupted or truncated ciphertext. May indicate tampering
    or desynchronized keys, so it is logged at WARNING.
    """
    code = ErrorCode.DECRYPT
    disposition = Disposition.DROP_MESSAGE


# ----------------------------------------------------------------------------
# Channel-level
# ----------------------------------------------------------------------------

class StreamError(SecureCommError):
    """Write, read or reset failure on the underlying stream."""
    code = ErrorCode.RECV
    disposition = Disposition.CLOSE_CHANNEL


class ResourceError(SecureCommError):
    """Allocation failure; the operation in progress is abandoned."""
    code = ErrorCode.MEMORY
    disposition = Disposition.ABORT_OPERATION


class NonceExhaustedError(ResourceError):
    """A counter nonce source ran out of values for the current key."""
    code = ErrorCode.ENCRYPT
    disposition = Disposition.CLOSE_CHANNEL


# ----------------------------------------------------------------------------
# Ambient
# ----------------------------------------------------------------------------

class ConfigurationError(SecureCommError):
    """Raised when configuration is missing or invalid."""
    code = ErrorCode.CONFIG
    disposition = Disposition.ABORT_SESSION


class CompressionError(SecureCommError):
    """Compression or decompression failed."""
    code = ErrorCode.COMPRESS
    disposition = Disposition.ABORT_OPERATION


def classify(exc: BaseException) -> Disposition:
    """
    Decide what to do after an exception.

    Exceptions from outside the taxonomy are treated as channel-fatal.
    """
    if isinstance(exc, SecureCommError):
        return exc.disposition
    if isinstance(exc, MemoryError):
        return Disposition.ABORT_OPERATION
    return Disposition.CLOSE_CHANNEL


def is_fatal_to_channel(exc: BaseException) -> bool:
    """True if the exception must tear down the duplex channel."""
    return classify(exc) in (Disposition.CLOSE_CHANNEL, Disposition.ABORT_SESSION)
