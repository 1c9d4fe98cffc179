"""Audit logging service - append-only verification log with a per-user hash chain.

Security guidelines:
- NEVER log PIN values, unlock tokens or access tokens
- Hash PII in details (use hash_email for emails)
- Use IDs instead of raw data where possible
- IP: Trust X-Forwarded-For only behind a configured proxy

log_event never commits. Callers write the audit entry in the same
transaction as the state change it describes.
"""

import hashlib
import json
from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from willtank.core.config import settings
from willtank.db.enums import AuditAction
from willtank.db.models import VerificationLog

GENESIS_HASH = "0" * 64  # All zeros for first entry


def hash_email(email: str | None) -> str:
    """Hash email for audit log (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    suffix = hashlib.sha256(email.lower().encode()).hexdigest()[:12]
    return f"{prefix}...@[hash:{suffix}]"


def get_client_ip(request: Request | None) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if not request:
        return None

    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request | None) -> str | None:
    """Extract user agent from request."""
    if not request:
        return None
    ua = request.headers.get("user-agent", "")
    # Truncate to 500 chars (DB limit)
    return ua[:500] if ua else None


def canonical_json(obj: dict | None) -> str:
    """
    Serialize object to canonical JSON for consistent hashing.

    Uses sorted keys, compact separators, and str() for non-JSON types.
    """
    return json.dumps(obj or {}, sort_keys=True, separators=(",", ":"), default=str)


def compute_entry_hash(
    prev_hash: str,
    entry_id: str,
    user_id: str,
    action: str,
    created_at: str,
    details_json: str,
    ip_address: str = "",
    user_agent: str = "",
) -> str:
    """Hash = SHA256(all immutable fields joined with |)."""
    data = "|".join([
        prev_hash,
        entry_id,
        user_id,
        action,
        created_at,
        details_json,
        ip_address,
        user_agent,
    ])
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def get_last_hash(db: Session, user_id: UUID) -> str:
    """Hash of the user's most recent log entry, or the genesis hash."""
    result = db.execute(
        select(VerificationLog.entry_hash)
        .where(VerificationLog.user_id == user_id)
        .where(VerificationLog.entry_hash.isnot(None))
        .order_by(VerificationLog.id.desc())
        .limit(1)
    ).scalar()
    return result or GENESIS_HASH


def _hash_for(entry: VerificationLog) -> str:
    return compute_entry_hash(
        prev_hash=entry.prev_hash or GENESIS_HASH,
        entry_id=str(entry.id),
        user_id=str(entry.user_id),
        action=entry.action,
        created_at=entry.created_at.isoformat(),
        details_json=canonical_json(entry.details),
        ip_address=entry.ip_address or "",
        user_agent=entry.user_agent or "",
    )


def log_event(
    db: Session,
    user_id: UUID,
    action: AuditAction,
    details: dict[str, Any] | None = None,
    request: Request | None = None,
) -> VerificationLog:
    """
    Append a verification log entry with hash chain.

    Args:
        db: Database session
        user_id: Subject user (owner of the verification records)
        action: Action being recorded
        details: Additional context (must be redacted - no PINs/raw emails)
        request: FastAPI request for IP/user-agent extraction

    Returns:
        The created log entry (flushed, not committed)
    """
    prev_hash = get_last_hash(db, user_id)

    entry = VerificationLog(
        user_id=user_id,
        action=action.value,
        details=details,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        prev_hash=prev_hash,
    )
    db.add(entry)
    db.flush()  # Get ID and created_at

    entry.entry_hash = _hash_for(entry)
    db.flush()
    return entry


def list_events(
    db: Session,
    user_id: UUID,
    action: AuditAction | None = None,
    limit: int = 100,
) -> list[VerificationLog]:
    """Newest first."""
    query = db.query(VerificationLog).filter(VerificationLog.user_id == user_id)
    if action:
        query = query.filter(VerificationLog.action == action.value)
    return query.order_by(VerificationLog.id.desc()).limit(limit).all()


def verify_chain(db: Session, user_id: UUID) -> bool:
    """
    Recompute the user's chain from genesis.

    Returns False on the first entry whose prev_hash or entry_hash does not match.
    """
    entries = (
        db.query(VerificationLog)
        .filter(VerificationLog.user_id == user_id)
        .order_by(VerificationLog.id)
        .all()
    )
    expected_prev = GENESIS_HASH
    for entry in entries:
        if entry.prev_hash != expected_prev:
            return False
        if entry.entry_hash != _hash_for(entry):
            return False
        expected_prev = entry.entry_hash
    return True
