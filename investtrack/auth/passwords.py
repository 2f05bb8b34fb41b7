"""bcrypt password hashing.

Stored hashes use the modular crypt format (``$2b$12$...``). Anything
that does not carry a bcrypt prefix is treated as plaintext and must be
hashed before it reaches disk.
"""

from __future__ import annotations

import re

import bcrypt

from investtrack.config import DEFAULT_BCRYPT_ROUNDS, validate_rounds

_BCRYPT_PREFIX = re.compile(r"^\$2[aby]\$\d{2}\$")


def is_hashed(value: str) -> bool:
    """Return True if ``value`` already looks like a bcrypt hash."""
    return bool(_BCRYPT_PREFIX.match(value))


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Hash a plaintext password with bcrypt.

    Args:
        password: Plaintext password.
        rounds: bcrypt cost factor.

    Returns:
        The encoded hash as text.

    Raises:
        ValueError: If the password is empty or the cost is out of range.

    """
    if not password:
        msg = "password must be a non-empty string"
        raise ValueError(msg)
    salt = bcrypt.gensalt(rounds=validate_rounds(rounds))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")


def ensure_hashed(value: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Return ``value`` unchanged if hashed, otherwise its bcrypt hash."""
    if is_hashed(value):
        return value
    return hash_password(value, rounds)


def verify_password(password: str, hashed: str) -> bool:
    """Check a plaintext password against a stored bcrypt hash.

    Malformed hashes never match.
    """
    if not password or not is_hashed(hashed):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("ascii"))
    except ValueError:
        return False
