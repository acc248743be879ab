# Authentication Module
"""
Authentication implementations including:
- Credential and principal types - provider.py
- Static and Argon2id-backed trust stores - provider.py
- Password hashing (Argon2id) - passwords.py

Security features:
- Argon2id for password hashing (PHC winner)
- Constant-time comparison for credential checks
"""

from .passwords import (
    PasswordHasher_,
    hash_password,
    verify_password,
    validate_password_strength,
)

from .provider import (
    AuthenticationProvider,
    Credentials,
    HashedCredentialStore,
    Principal,
    StaticCredentialStore,
    create_provider,
    secure_compare,
)

__all__ = [
    # Passwords
    'PasswordHasher_',
    'hash_password',
    'verify_password',
    'validate_password_strength',
    # Providers
    'AuthenticationProvider',
    'Credentials',
    'HashedCredentialStore',
    'Principal',
    'StaticCredentialStore',
    'create_provider',
    'secure_compare',
]
