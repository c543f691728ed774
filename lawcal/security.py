"""Argon2 checks for the shared admin password."""

from __future__ import annotations

from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_hasher = PasswordHasher()


def hash_password(plain_text: str) -> str:
    if not plain_text:
        raise ValueError("Cannot hash an empty password")
    return _hasher.hash(plain_text)


def verify_password(plain_text: str, hashed: str) -> bool:
    """True when ``plain_text`` matches the Argon2 ``hashed`` value."""
    if not (plain_text and hashed):
        return False
    try:
        return _hasher.verify(hashed, plain_text)
    except (VerificationError, InvalidHashError):
        return False


@lru_cache(maxsize=4)
def hashed_secret(secret: str) -> str:
    # The configured password is plain text; hash it once per distinct value.
    return hash_password(secret)


def check_admin_password(candidate: str, secret: str) -> bool:
    if not secret:
        return False
    return verify_password(candidate, hashed_secret(secret))
