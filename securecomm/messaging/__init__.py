# Secure Messaging Module
"""
Secure messaging implementations including:
- DH (RFC 3526 group 14) key agreement
- HKDF-SHA256 session key derivation
- AES-256-GCM frame sealing
- Datagram and length-prefixed wire framing
- Duplex engine pumping messages both ways over one connection

Frame format: [nonce | tag | ciphertext]

Security features:
- Authenticated encryption (AES-GCM), tag checked before any plaintext
- Session key erased on terminate()
- Never reuse nonces
"""

from .frame import (
    Frame,
    FrameCodec,
    RandomNonceSource,
    CounterNonceSource,
    create_nonce_source,
    generate_nonce,
    seal,
    open_frame,
)

from .framing import (
    DatagramFraming,
    LengthPrefixedFraming,
    create_framing,
)

from .session import (
    KeyAgreement,
    Session,
    SessionEstablisher,
    derive_session_key,
    establish,
)

from .duplex import (
    QUIT,
    Channel,
    ChannelStats,
    ConsoleMessageSource,
    Display,
    DuplexEngine,
    MessageSource,
    QueueMessageSource,
)

from .transport import (
    SocketStream,
    StreamKeyExchange,
    connect,
    listen,
)

__all__ = [
    # Frames
    'Frame',
    'FrameCodec',
    'RandomNonceSource',
    'CounterNonceSource',
    'create_nonce_source',
    'generate_nonce',
    'seal',
    'open_frame',
    # Framing
    'DatagramFraming',
    'LengthPrefixedFraming',
    'create_framing',
    # Session
    'KeyAgreement',
    'Session',
    'SessionEstablisher',
    'derive_session_key',
    'establish',
    # Duplex
    'QUIT',
    'Channel',
    'ChannelStats',
    'ConsoleMessageSource',
    'Display',
    'DuplexEngine',
    'MessageSource',
    'QueueMessageSource',
    # Transport
    'SocketStream',
    'StreamKeyExchange',
    'connect',
    'listen',
]
