"""
Password Hashing Module

Argon2id hashing behind the file-backed credential store and the
`securecomm hash-password` command.

Users files only ever hold encoded hashes. A hash that fails to parse
counts as a mismatch, never as an error, so a damaged entry locks that
user out instead of taking the server down.
"""

import re
from typing import Dict, List

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError


# Encoded into every hash, so stored entries keep verifying if these change
ARGON2_PARAMETERS = {
    'time_cost': 3,
    'memory_cost': 64 * 1024,  # KiB
    'parallelism': 4,
    'hash_len': 32,
    'salt_len': 16,
    'type': Type.ID,
}

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

# (pattern, message) pairs checked by validate_password_strength
_STRENGTH_RULES = [
    (r'[A-Z]', "Must contain at least one uppercase letter"),
    (r'[a-z]', "Must contain at least one lowercase letter"),
    (r'\d', "Must contain at least one digit"),
    (r'[!@#$%^&*(),.?":{}|<>]', "Must contain at least one special character"),
]


class PasswordHasher_:
    """
    Argon2id hashing with SecureComm's parameters.

    Example:
        >>> hasher = PasswordHasher_()
        >>> encoded = hasher.hash_password("SecurePass123!")
        >>> hasher.verify_password("SecurePass123!", encoded)
        True
    """

    def __init__(self, **overrides):
        """
        Args:
            **overrides: Replace any of ARGON2_PARAMETERS (tests use
                cheaper settings)
        """
        self._hasher = PasswordHasher(**{**ARGON2_PARAMETERS, **overrides})

    def hash_password(self, password: str) -> str:
        """
        Returns:
            Encoded hash with salt and parameters, e.g. "$argon2id$v=19$..."

        Raises:
            ValueError: If password is empty
        """
        if not password:
            raise ValueError("Password must not be empty")
        return self._hasher.hash(password)

    def verify_password(self, password: str, hash_str: str) -> bool:
        try:
            return self._hasher.verify(hash_str, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False


def validate_password_strength(password: str) -> Dict:
    """
    Advisory strength report for a new password.

    Returns:
        Dict with 'valid' bool and 'errors' list of messages
    """
    problems: List[str] = []

    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Must be at least {PASSWORD_MIN_LENGTH} characters")
    elif len(password) > PASSWORD_MAX_LENGTH:
        problems.append(f"Must be at most {PASSWORD_MAX_LENGTH} characters")

    problems.extend(message for pattern, message in _STRENGTH_RULES
                    if not re.search(pattern, password))

    return {'valid': not problems, 'errors': problems}


_default_hasher = None


def _get_default_hasher() -> PasswordHasher_:
    global _default_hasher
    if _default_hasher is None:
        _default_hasher = PasswordHasher_()
    return _default_hasher


def hash_password(password: str) -> str:
    """Hash with the default parameters."""
    return _get_default_hasher().hash_password(password)


def verify_password(password: str, hash_str: str) -> bool:
    """Verify against a hash made with any Argon2 parameters."""
    return _get_default_hasher().verify_password(password, hash_str)
