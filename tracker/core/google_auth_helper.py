"""Server-side Google OAuth token management.

Handles encryption/decryption of stored tokens, refresh-token exchange,
and handing out a valid access token per user.
"""

import base64
import hashlib
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import httpx
from cryptography.fernet import Fernet, InvalidToken

from tracker.core.config import get_settings
from tracker.db import communication_integrations as ci_db

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class CredentialUnavailableError(Exception):
    """Raised when a user has no usable OAuth credential for a provider."""


def _get_fernet() -> Fernet:
    """Build a Fernet cipher from the configured encryption secret."""
    settings = get_settings()
    key = settings.TOKEN_ENCRYPTION_KEY
    if not key:
        raise ValueError("TOKEN_ENCRYPTION_KEY not configured")
    # Derive a consistent 32-byte key via SHA-256
    raw_key = hashlib.sha256(key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(raw_key))


def encrypt_token(token: str) -> str:
    """Encrypt an OAuth token for storage."""
    return _get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt a stored OAuth token."""
    try:
        return _get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken as e:
        # Never log token material
        raise ValueError("Failed to decrypt OAuth token") from e


def is_token_expired(expires_at: datetime, buffer_seconds: int | None = None) -> bool:
    """Check whether a token is expired or within the refresh buffer."""
    if buffer_seconds is None:
        buffer_seconds = get_settings().ACCESS_TOKEN_EXPIRY_BUFFER_SECONDS
    return datetime.now(UTC) > expires_at - timedelta(seconds=buffer_seconds)


async def exchange_refresh_for_access(encrypted_refresh_token: str) -> dict[str, Any]:
    """
    Exchange an encrypted refresh token for a fresh Google access token.

    Args:
        encrypted_refresh_token: Encrypted refresh token from DB

    Returns:
        Token response with ``access_token`` and ``expires_in``

    Raises:
        ValueError: If Google OAuth is not configured
        httpx.HTTPStatusError: If token exchange fails
    """
    settings = get_settings()

    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        raise ValueError("Google OAuth not configured")

    refresh_token = decrypt_token(encrypted_refresh_token)

    async with httpx.AsyncClient(timeout=settings.EXTERNAL_API_TIMEOUT_SECONDS) as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        response.raise_for_status()
        return response.json()


async def get_valid_access_token(user_id: UUID, provider: str = "google") -> str:
    """
    Get a valid access token for a user, refreshing it when needed.

    Args:
        user_id: User whose credential to use
        provider: Integration provider

    Returns:
        Plain access token

    Raises:
        CredentialUnavailableError: No integration, no refresh token, or the
            refresh failed
    """
    integration = ci_db.get_integration(user_id, provider)
    if not integration or not integration.get("google_refresh_token_encrypted"):
        raise CredentialUnavailableError(f"No {provider} integration for user {user_id}")

    cached = integration.get("google_access_token_encrypted")
    expires_at = integration.get("google_access_token_expires_at")
    if cached and expires_at:
        try:
            if not is_token_expired(datetime.fromisoformat(expires_at)):
                return decrypt_token(cached)
        except ValueError:
            logger.warning(f"Discarding unreadable cached access token for user {user_id}")

    try:
        token = await exchange_refresh_for_access(integration["google_refresh_token_encrypted"])
        access_token = token["access_token"]
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.warning(f"Token refresh failed for user {user_id}: {type(e).__name__}")
        raise CredentialUnavailableError(
            f"Failed to refresh {provider} access for user {user_id}"
        ) from e

    new_expires_at = datetime.now(UTC) + timedelta(seconds=int(token.get("expires_in", 3600)))

    ci_db.update_integration(
        integration["id"],
        {
            "google_access_token_encrypted": encrypt_token(access_token),
            "google_access_token_expires_at": new_expires_at.isoformat(),
        },
    )
    logger.info(f"Refreshed {provider} access token for user {user_id}")

    return access_token
