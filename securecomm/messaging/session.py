"""
Session Establishment

Authenticates a principal and derives a 256-bit session key through
finite-field Diffie-Hellman.

Implements:
- Ephemeral DH over RFC 3526 group 14 (2048-bit MODP, generator 2)
- Peer public value validation (1 < y < p - 1)
- HKDF-SHA256 key derivation from the raw shared secret
- Key erasure on terminate()

Public values travel as fixed-width 256-byte big-endian integers. The
transport supplies a PublicValueExchange: a callable that sends the local
public value and returns the peer's.
"""

import logging
from typing import Callable, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dh
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..auth.provider import AuthenticationProvider, Credentials, StaticCredentialStore
from ..errors import AuthError, KeyAgreementError
from .frame import KEY_SIZE


# RFC 3526 section 3, 2048-bit MODP group
MODP_2048_PRIME = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF",
    16,
)
MODP_2048_GENERATOR = 2
PUBLIC_VALUE_SIZE = 256  # bytes, big-endian

HKDF_INFO = b"securecomm session key v1"
KEY_AGREEMENT_ALGORITHM = "DH-MODP2048/HKDF-SHA256"

PublicValueExchange = Callable[[bytes], bytes]

# Counter nonce prefixes. The side with the lower public value seals with
# the first, so the two directions of a session never share a nonce.
LOW_SIDE_PREFIX = b"\x00\x00\x00\x00"
HIGH_SIDE_PREFIX = b"\x00\x00\x00\x01"

_PARAMETER_NUMBERS = dh.DHParameterNumbers(MODP_2048_PRIME, MODP_2048_GENERATOR)
_parameters = None


def _group_parameters() -> dh.DHParameters:
    global _parameters
    if _parameters is None:
        _parameters = _PARAMETER_NUMBERS.parameters()
    return _parameters


def encode_public_value(y: int) -> bytes:
    """Encode a public value as a fixed 256-byte big-endian integer."""
    return y.to_bytes(PUBLIC_VALUE_SIZE, "big")


def decode_public_value(data: bytes) -> int:
    """
    Decode and range-check a peer public value.

    Raises:
        KeyAgreementError: Wrong length, or y outside (1, p - 1)
    """
    if len(data) != PUBLIC_VALUE_SIZE:
        raise KeyAgreementError(
            f"Public value must be {PUBLIC_VALUE_SIZE} bytes, got {len(data)}"
        )
    y = int.from_bytes(data, "big")
    if not 1 < y < MODP_2048_PRIME - 1:
        raise KeyAgreementError("Peer public value out of range")
    return y


def derive_session_key(shared_secret: bytes, salt: Optional[bytes] = None) -> bytes:
    """
    Derive the session key from a DH shared secret using HKDF-SHA256.

    Args:
        shared_secret: Raw DH output (input key material)
        salt: Optional salt

    Returns:
        32-byte session key
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        info=HKDF_INFO,
    )
    return hkdf.derive(bytes(shared_secret))


class KeyAgreement:
    """
    One ephemeral DH keypair over group 14.

    Example:
        >>> a, b = KeyAgreement(), KeyAgreement()
        >>> a.compute_shared_secret(b.public_bytes) == b.compute_shared_secret(a.public_bytes)
        True
    """

    def __init__(self):
        try:
            self._private_key = _group_parameters().generate_private_key()
        except ValueError as exc:
            raise KeyAgreementError(f"Key generation failed: {exc}") from exc

    @property
    def public_value(self) -> int:
        return self._private_key.public_key().public_numbers().y

    @property
    def public_bytes(self) -> bytes:
        """Local public value, 256 bytes big-endian."""
        return encode_public_value(self.public_value)

    def compute_shared_secret(self, peer_public: bytes) -> bytearray:
        """
        Combine the local private key with the peer's public value.

        Returns:
            Shared secret in a mutable buffer the caller must zero

        Raises:
            KeyAgreementError: On a bad peer value or group failure
        """
        if self._private_key is None:
            raise KeyAgreementError("Keypair already released")
        y = decode_public_value(peer_public)
        try:
            peer_key = dh.DHPublicNumbers(y, _PARAMETER_NUMBERS).public_key()
            return bytearray(self._private_key.exchange(peer_key))
        except ValueError as exc:
            raise KeyAgreementError(f"Key agreement failed: {exc}") from exc

    def release(self) -> None:
        """Drop the private key."""
        self._private_key = None


class Session:
    """
    An established session.

    Only ever constructed fully established. terminate() overwrites the key
    with zeros; the session cannot be used afterwards.
    """

    def __init__(self, principal: str, key_agreement: KeyAgreement,
                 peer_public: bytes, session_key: bytes):
        if len(session_key) != KEY_SIZE:
            raise ValueError(f"Session key must be {KEY_SIZE} bytes")
        self.principal = principal
        self.key_agreement = key_agreement
        self.peer_public = peer_public
        # Equal-length big-endian bytes compare like the integers
        if key_agreement.public_bytes < peer_public:
            self.nonce_prefix = LOW_SIDE_PREFIX
        else:
            self.nonce_prefix = HIGH_SIDE_PREFIX
        self._key = bytearray(session_key)
        self._terminated = False

    def __repr__(self) -> str:
        state = "terminated" if self._terminated else "established"
        return f"Session(principal={self.principal!r}, {state})"

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    @property
    def session_key(self) -> bytes:
        """
        Copy of the 32-byte session key.

        Raises:
            RuntimeError: If the session has been terminated
        """
        if self._terminated:
            raise RuntimeError("Session has been terminated")
        return bytes(self._key)

    def terminate(self) -> None:
        """Zero the key, then release keypair and peer material. Idempotent."""
        if self._terminated:
            return
        for i in range(len(self._key)):
            self._key[i] = 0
        if self.key_agreement is not None:
            self.key_agreement.release()
        self.key_agreement = None
        self.peer_public = None
        self._terminated = True


class SessionEstablisher:
    """
    Runs authentication, key agreement and key derivation in order.

    There is no internal retry; every outcome is written to the security
    event log when a RuntimeContext is supplied.
    """

    def __init__(self, provider: Optional[AuthenticationProvider] = None, context=None):
        """
        Args:
            provider: Credential check (reference static store if None)
            context: RuntimeContext for logging and security events
        """
        self._provider = provider or StaticCredentialStore()
        self._context = context
        if context is not None:
            self._logger = context.logger
        else:
            self._logger = logging.getLogger("securecomm")

    @property
    def provider(self) -> AuthenticationProvider:
        return self._provider

    def establish(self, credentials: Credentials,
                  exchange: PublicValueExchange) -> Session:
        """
        Establish a session.

        Args:
            credentials: Username and password to verify
            exchange: Sends our public value, returns the peer's

        Returns:
            A fully established Session

        Raises:
            AuthError: Credentials rejected; nothing was allocated
            KeyAgreementError: Bad peer value or group failure
            StreamError: The public value exchange failed
        """
        events = self._context.events if self._context is not None else None

        try:
            principal = self._provider.verify(credentials)
        except AuthError:
            self._logger.error("Authentication failed")
            if events is not None:
                events.log_auth_failed(credentials.username)
            raise

        agreement = None
        shared = None
        try:
            agreement = KeyAgreement()
            peer_public = bytes(exchange(agreement.public_bytes))
            if peer_public == agreement.public_bytes:
                raise KeyAgreementError("Peer returned our own public value")
            shared = agreement.compute_shared_secret(peer_public)
            session_key = derive_session_key(shared)
        except Exception as exc:
            if agreement is not None:
                agreement.release()
            self._logger.error("Key agreement failed: %s", exc)
            if events is not None:
                events.log_key_agreement_failed(principal.username, type(exc).__name__)
            raise
        finally:
            if shared is not None:
                for i in range(len(shared)):
                    shared[i] = 0

        self._logger.info("Session established for %s", principal.username)
        if events is not None:
            events.log_session_established(principal.username, KEY_AGREEMENT_ALGORITHM)
        return Session(principal.username, agreement, peer_public, session_key)


def establish(credentials: Credentials, exchange: PublicValueExchange,
              provider: Optional[AuthenticationProvider] = None,
              context=None) -> Session:
    """Function form of SessionEstablisher.establish()."""
    return SessionEstablisher(provider, context).establish(credentials, exchange)
