"""One-way hashing of passwords, one-time codes and refresh tokens."""

import base64
import hashlib
from typing import Protocol

import bcrypt

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

# Min/max lengths for username and password validation.
USERNAME_MIN_LEN = 4
USERNAME_MAX_LEN = 32
PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 128


class SecretHasher(Protocol):
    """Slow salted one-way hash with a constant-time compare."""

    def hash(self, plain: str) -> str: ...

    def compare(self, plain: str, digest: str) -> bool: ...


def _prehash(plain: str) -> bytes:
    # bcrypt only reads the first 72 bytes; signed tokens share long common
    # prefixes, so everything is reduced to a fixed-size SHA-256 digest first.
    digest = hashlib.sha256(plain.encode("utf-8")).digest()
    return base64.b64encode(digest)


class BcryptHasher:
    """SecretHasher backed by bcrypt over a SHA-256 pre-hash."""

    def __init__(self, rounds: int = BCRYPT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        """Hash a plain-text secret for storage. Do not store plain secrets."""
        return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def compare(self, plain: str, digest: str) -> bool:
        """Verify a plain secret against a stored digest. bcrypt.checkpw is constant-time."""
        try:
            return bcrypt.checkpw(_prehash(plain), digest.encode("utf-8"))
        except (ValueError, TypeError):
            return False
