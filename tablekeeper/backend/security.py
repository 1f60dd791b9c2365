"""Hashing and token helpers for accounts and sessions."""

from __future__ import annotations

import hashlib
import hmac
import secrets


TOKEN_BYTES = 24


def generate_token() -> str:
    """Generate a URL-safe token for sessions and password resets."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_secret(secret: str, server_salt: str) -> str:
    """Create deterministic hash via sha256(secret + server_salt)."""
    payload = f"{secret}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def verify_secret(raw_secret: str, expected_hash: str, server_salt: str) -> bool:
    """Compare a raw secret against a stored hash in constant time."""
    return hmac.compare_digest(hash_secret(raw_secret, server_salt), expected_hash)


def client_password_hash(username: str, password: str) -> str:
    """Hash a password the way the browser does before it leaves the client.

    The server never sees the plain password, only this value, which it salts
    again with :func:`hash_secret` before storing.
    """
    return hashlib.sha256(f"{username}:{password}".encode("utf-8")).hexdigest()
