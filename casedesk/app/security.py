"""Password hashing and opaque token helpers."""

from __future__ import annotations

import secrets

from passlib.hash import pbkdf2_sha256 as hasher


def hash_password(password: str) -> str:
    return hasher.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return hasher.verify(password, hashed)
    except ValueError:
        # malformed or foreign hash format
        return False


def generate_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)
