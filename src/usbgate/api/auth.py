"""
API key authentication for the admin API.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

logger = logging.getLogger(__name__)


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def hash_api_key(key: str) -> str:
    """
    Hash an API key for storage using HMAC-SHA256.

    The key prefix is the salt so the same key always hashes the same way.
    """
    salt = key[:8] if len(key) >= 8 else key
    return hmac.new(salt.encode(), key.encode(), hashlib.sha256).hexdigest()


def generate_api_key() -> str:
    """Generate a new random API key."""
    return f"ugk_{secrets.token_urlsafe(32)}"


class APIKeyStore:
    """Holds the hash of the single admin key."""

    def __init__(self) -> None:
        self._key_hash: str | None = None

    def set_key(self, key: str) -> None:
        self._key_hash = hash_api_key(key)

    def verify(self, key: str) -> bool:
        """Constant-time check of a presented key."""
        if self._key_hash is None:
            return False
        return hmac.compare_digest(hash_api_key(key), self._key_hash)


key_store = APIKeyStore()


async def require_api_key(header_key: str | None = Security(api_key_header)) -> str:
    """
    FastAPI dependency enforcing a valid X-API-Key header.

    Raises:
        HTTPException: If no valid key provided
    """
    if header_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if not key_store.verify(header_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return header_key


def init_auth(key: str | None = None) -> str:
    """
    Initialize authentication.

    Args:
        key: Configured admin key; a random one is generated if None

    Returns:
        The active key
    """
    if key is None:
        key = generate_api_key()
        logger.warning("Generated admin API key: %s", key)
    else:
        logger.info("Admin API key configured")
    key_store.set_key(key)
    return key
