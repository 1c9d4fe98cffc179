"""Security utilities for platform session tokens and secret comparison."""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from willtank.core.config import settings


# =============================================================================
# Session Token (issued by the identity platform)
# =============================================================================

def create_session_token(
    user_id: UUID,
    email: str | None = None,
    full_name: str | None = None,
) -> str:
    """
    Create signed session JWT.

    Production tokens are minted by the identity platform with the shared
    secret; this helper exists for tooling and tests.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    if email:
        payload["email"] = email
    if full_name:
        payload["name"] = full_name
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Opaque tokens
# =============================================================================

def generate_token() -> str:
    """Generate a URL-safe random token (unlock links, access sessions)."""
    return secrets.token_urlsafe(32)


def verify_secret(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison that rejects empty values."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
