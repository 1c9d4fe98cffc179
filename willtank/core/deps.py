"""FastAPI dependencies for authentication, internal secrets, and database access."""

from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from willtank.core.config import settings
from willtank.core.security import decode_session_token, verify_secret
from willtank.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "willtank_session"
INTERNAL_SECRET_HEADER = "X-Internal-Secret"
ACCESS_TOKEN_HEADER = "X-Access-Token"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(COOKIE_NAME)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Get authenticated user from the platform session token.

    Validates:
    - Token present (Bearer header or session cookie)
    - JWT is valid and not expired
    - Subject is a UUID

    The local user row is mirrored on first sight.

    Raises:
        HTTPException 401: Authentication failed
    """
    from willtank.services import user_service

    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid session")

    try:
        user_id = UUID(str(payload.get("sub")))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session")

    return user_service.get_or_create_user(
        db,
        user_id=user_id,
        email=payload.get("email"),
        full_name=payload.get("name"),
    )


def verify_internal_secret(
    x_internal_secret: str | None = Header(default=None, alias=INTERNAL_SECRET_HEADER),
) -> None:
    """Guard for cron/internal endpoints."""
    if not verify_secret(x_internal_secret, settings.INTERNAL_SECRET):
        raise HTTPException(status_code=401, detail="Invalid internal secret")


def get_access_token(request: Request) -> str:
    """Executor document-access token from header or `token` query parameter."""
    token = request.headers.get(ACCESS_TOKEN_HEADER) or request.query_params.get("token")
    if not token:
        raise HTTPException(status_code=401, detail="Missing access token")
    return token
