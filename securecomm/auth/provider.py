"""
Authentication Providers

Decides whether a (username, password) pair may open a session.

Backends:
- StaticCredentialStore: one fixed principal, "user"/"pass" by default
- HashedCredentialStore: Argon2id hashes loaded from a YAML users file

Security considerations:
- Use constant-time comparison (hmac.compare_digest) for secrets
- Both fields are always compared, so timing does not reveal which failed
- Unknown users still cost one Argon2 verification
- Never log passwords
"""

import hmac
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

from ..errors import AuthError, ConfigurationError
from .passwords import PasswordHasher_


@dataclass(frozen=True)
class Credentials:
    """A login attempt. The password never appears in repr()."""
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class Principal:
    """An authenticated identity."""
    username: str


def secure_compare(a: str, b: str) -> bool:
    """
    Constant-time string comparison.

    Args:
        a: First string
        b: Second string

    Returns:
        True if strings are equal
    """
    return hmac.compare_digest(a.encode(), b.encode())


class AuthenticationProvider:
    """Interface for credential checks."""

    def verify(self, credentials: Credentials) -> Principal:
        """
        Check credentials.

        Returns:
            The authenticated Principal

        Raises:
            AuthError: If the credentials are not accepted
        """
        raise NotImplementedError


class StaticCredentialStore(AuthenticationProvider):
    """
    Fixed single-principal trust store.

    Example:
        >>> store = StaticCredentialStore()
        >>> store.verify(Credentials("user", "pass"))
        Principal(username='user')
    """

    def __init__(self, username: str = "user", password: str = "pass"):
        self._username = username
        self._password = password

    def verify(self, credentials: Credentials) -> Principal:
        # Evaluate both before branching
        user_ok = secure_compare(credentials.username, self._username)
        pass_ok = secure_compare(credentials.password, self._password)
        if not (user_ok and pass_ok):
            raise AuthError("Authentication failed")
        return Principal(credentials.username)


class HashedCredentialStore(AuthenticationProvider):
    """
    Username -> Argon2id hash trust store.

    Users file format:

        users:
          alice: "$argon2id$v=19$m=65536,t=3,p=4$..."
          bob:   "$argon2id$v=19$..."
    """

    def __init__(self, users: Dict[str, str],
                 hasher: Optional[PasswordHasher_] = None):
        """
        Args:
            users: Username -> encoded Argon2id hash
            hasher: Hasher used for verification (default parameters if None)
        """
        self._users = dict(users)
        self._hasher = hasher or PasswordHasher_()
        # Verified against for unknown usernames
        self._dummy_hash = self._hasher.hash_password(secrets.token_hex(16))

    @classmethod
    def from_file(cls, path: Union[str, Path],
                  hasher: Optional[PasswordHasher_] = None) -> 'HashedCredentialStore':
        """
        Load a users file.

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Users file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in users file {path}: {exc}") from exc

        users = data.get("users") if isinstance(data, dict) else None
        if not isinstance(users, dict):
            raise ConfigurationError(f"Expected a 'users' mapping in {path}")
        for name, encoded in users.items():
            if not isinstance(name, str) or not isinstance(encoded, str):
                raise ConfigurationError(f"Invalid entry for user {name!r} in {path}")
        return cls(users, hasher)

    def __contains__(self, username: str) -> bool:
        return username in self._users

    def __len__(self) -> int:
        return len(self._users)

    def verify(self, credentials: Credentials) -> Principal:
        encoded = self._users.get(credentials.username)
        known = encoded is not None
        valid = self._hasher.verify_password(
            credentials.password, encoded if known else self._dummy_hash
        )
        if not (known and valid):
            raise AuthError("Authentication failed")
        return Principal(credentials.username)


def create_provider(config) -> AuthenticationProvider:
    """Build the provider named by config.auth.backend."""
    backend = config.auth.backend
    if backend == "static":
        return StaticCredentialStore()
    if backend == "file":
        return HashedCredentialStore.from_file(config.auth.users_file)
    raise ConfigurationError(f"Unknown auth backend: {backend!r}")
