"""Operator API key generation and verification for the HTTP surface."""

import base64
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

# Argon2id with library defaults
_ph = PasswordHasher()

API_KEY_PREFIX = "cv_"


def generate_api_key() -> str:
    """
    Generate an operator API key in format: cv_<32 random bytes as base64url>.

    The key is shown once; only its hash goes into API_KEY_HASH.
    """
    random_bytes = secrets.token_bytes(32)
    encoded = base64.urlsafe_b64encode(random_bytes).decode("ascii").rstrip("=")
    return f"{API_KEY_PREFIX}{encoded}"


def hash_api_key(api_key: str) -> str:
    """Hash API key using Argon2id."""
    return _ph.hash(api_key)


def verify_api_key(api_key: str, api_key_hash: str) -> bool:
    """Verify API key against a stored Argon2id hash. Malformed hashes never verify."""
    try:
        return _ph.verify(api_key_hash, api_key)
    except (VerificationError, InvalidHashError):
        return False
