"""Time-boxed executor access sessions.

expires_at is fixed at grant time and checked server-side on every read.
A session can also be cut short (revoked_at, or a shortened expires_at
after a bulk archive download).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from willtank.core.config import settings
from willtank.core.security import generate_token
from willtank.db.models import DocumentAccessSession, VerificationRequest
from willtank.db.types import utcnow

logger = logging.getLogger(__name__)


class DocumentAccessError(Exception):
    """Base error for executor document access."""


class AccessTokenInvalidError(DocumentAccessError):
    pass


class AccessExpiredError(DocumentAccessError):
    """Session expired or revoked; the executor must restart verification."""


@dataclass
class AccessStatus:
    active: bool
    expires_at: datetime
    seconds_remaining: int
    revoked: bool
    archive_downloaded: bool


def grant_session(
    db: Session,
    request: VerificationRequest,
    now: datetime | None = None,
) -> DocumentAccessSession:
    """Create an access session. Flushed, committed by the caller."""
    now = now or utcnow()
    session = DocumentAccessSession(
        token=generate_token(),
        verification_request_id=request.id,
        user_id=request.user_id,
        granted_at=now,
        expires_at=now + timedelta(minutes=settings.DOCUMENT_ACCESS_MINUTES),
    )
    db.add(session)
    db.flush()
    return session


def get_session(db: Session, token: str) -> DocumentAccessSession | None:
    if not token:
        return None
    return db.query(DocumentAccessSession).filter(DocumentAccessSession.token == token).first()


def is_active(session: DocumentAccessSession, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return session.revoked_at is None and now < session.expires_at


def require_active_session(
    db: Session,
    token: str,
    now: datetime | None = None,
) -> DocumentAccessSession:
    """
    Resolve an access token to a live session.

    Raises:
        AccessTokenInvalidError: Unknown token
        AccessExpiredError: Past expires_at or revoked
    """
    session = get_session(db, token)
    if not session:
        raise AccessTokenInvalidError("Invalid access token")
    if not is_active(session, now):
        raise AccessExpiredError("Document access has expired. Please restart verification.")
    return session


def shorten_after_archive(
    session: DocumentAccessSession,
    now: datetime | None = None,
) -> None:
    """Cap the session at ARCHIVE_REVOKE_GRACE_SECONDS from now."""
    now = now or utcnow()
    cutoff = now + timedelta(seconds=settings.ARCHIVE_REVOKE_GRACE_SECONDS)
    if cutoff < session.expires_at:
        session.expires_at = cutoff


def revoke_sessions_for_request(
    db: Session,
    verification_request_id,
    now: datetime | None = None,
) -> int:
    now = now or utcnow()
    sessions = (
        db.query(DocumentAccessSession)
        .filter(
            DocumentAccessSession.verification_request_id == verification_request_id,
            DocumentAccessSession.revoked_at.is_(None),
        )
        .all()
    )
    for session in sessions:
        session.revoked_at = now
    return len(sessions)


def get_access_status(
    db: Session,
    token: str,
    now: datetime | None = None,
) -> AccessStatus:
    """Status for client polling. Unknown tokens raise AccessTokenInvalidError."""
    now = now or utcnow()
    session = get_session(db, token)
    if not session:
        raise AccessTokenInvalidError("Invalid access token")
    remaining = int((session.expires_at - now).total_seconds())
    active = is_active(session, now)
    return AccessStatus(
        active=active,
        expires_at=session.expires_at,
        seconds_remaining=max(0, remaining) if active else 0,
        revoked=session.revoked_at is not None,
        archive_downloaded=session.verification_request.archive_downloaded_at is not None,
    )
