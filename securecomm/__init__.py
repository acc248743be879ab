# SecureComm
"""
Authenticated, encrypted, bidirectional messaging over TCP.

Modules:
- messaging: session establishment, frame codec, duplex engine, transport
- auth: credential stores and Argon2id hashing
- integration: security event log
- config: configuration loading and the runtime context
- compression: zlib codec
- errors: error taxonomy
"""

__version__ = "1.0.0"
