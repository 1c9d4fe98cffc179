"""SQLAlchemy ORM models for users, estate records and the death-verification workflow."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from willtank.db.base import Base, JSONType
from willtank.db.enums import (
    CheckinStatus, JobStatus, UnlockMode, VerificationStatus, WillStatus
)
from willtank.db.types import utcnow

_OPEN_REQUEST_FILTER = "status IN ('pending', 'pins_sent', 'verified')"


# =============================================================================
# Users & Contacts
# =============================================================================

class User(Base):
    """
    Account mirrored from the identity platform.

    Rows are created lazily the first time a valid session token is seen.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    contacts: Mapped[list["Contact"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "WillTank user"


class Contact(Base):
    """A beneficiary, executor or trusted contact named by the user."""
    __tablename__ = "contacts"
    __table_args__ = (
        Index("idx_contacts_user_type", "user_id", "contact_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    contact_type: Mapped[str] = mapped_column(String(20), nullable=False)  # ContactType
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    relationship_label: Mapped[str | None] = mapped_column(
        "relationship", String(100), nullable=True
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    user: Mapped["User"] = relationship(back_populates="contacts")


# =============================================================================
# Will & Documents
# =============================================================================

class Will(Base):
    """The user's will text. One active will per user."""
    __tablename__ = "wills"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_wills_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(20), default=WillStatus.DRAFT.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class WillDocument(Base):
    """Supporting file uploaded alongside the will."""
    __tablename__ = "will_documents"
    __table_args__ = (
        Index("idx_will_documents_user", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    checksum_sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Death Verification
# =============================================================================

class VerificationSettings(Base):
    """Per-user check-in configuration. Exactly one row per user."""
    __tablename__ = "verification_settings"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_verification_settings_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    check_in_frequency_days: Mapped[int] = mapped_column(Integer, nullable=False)
    grace_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    check_in_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notification_preferences: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    unlock_mode: Mapped[str] = mapped_column(
        String(20), default=UnlockMode.PIN.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class CheckinRecord(Base):
    """
    Check-in history. Append-only; the latest row per user is authoritative.

    next_check_in = checked_in_at + check_in_frequency_days at write time.
    """
    __tablename__ = "checkin_records"
    __table_args__ = (
        Index("idx_checkins_user_checked_in", "user_id", "checked_in_at"),
        Index("idx_checkins_next_due", "next_check_in"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    checked_in_at: Mapped[datetime] = mapped_column(nullable=False)
    next_check_in: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=CheckinStatus.ALIVE.value, nullable=False
    )
    reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)


class VerificationRequest(Base):
    """
    One detected overdue episode, tracked from detection to unlock.

    Never deleted (audit trail). At most one open request per user is
    enforced by a partial unique index.
    """
    __tablename__ = "verification_requests"
    __table_args__ = (
        Index("idx_verification_requests_user", "user_id", "created_at"),
        Index(
            "uq_verification_requests_open_user",
            "user_id",
            unique=True,
            postgresql_where=text(_OPEN_REQUEST_FILTER),
            sqlite_where=text(_OPEN_REQUEST_FILTER),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=VerificationStatus.PENDING.value, nullable=False
    )
    trigger_reason: Mapped[str] = mapped_column(String(50), nullable=False)
    initiated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    unlock_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    archive_downloaded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verification_result: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    user: Mapped["User"] = relationship()
    pins: Mapped[list["VerificationPin"]] = relationship(
        back_populates="verification_request",
        order_by="VerificationPin.pin_index",
    )


class VerificationPin(Base):
    """One PIN per (verification request, contact)."""
    __tablename__ = "verification_pins"
    __table_args__ = (
        UniqueConstraint(
            "verification_request_id", "pin_code", name="uq_verification_pins_request_code"
        ),
        UniqueConstraint(
            "verification_request_id", "pin_index", name="uq_verification_pins_request_index"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    verification_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("verification_requests.id", ondelete="CASCADE"), nullable=False
    )
    # Contacts may be deleted later; the PIN keeps a snapshot of who received it
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    contact_type: Mapped[str] = mapped_column(String(20), nullable=False)
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pin_index: Mapped[int] = mapped_column(Integer, nullable=False)
    pin_code: Mapped[str] = mapped_column(String(6), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    send_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    verification_request: Mapped["VerificationRequest"] = relationship(back_populates="pins")


class StatusCheck(Base):
    """
    One "is this user still alive?" e-mail to a contact.

    The token in the e-mailed link is single-use: the first response
    (alive or deceased) is recorded and later ones are rejected.
    """
    __tablename__ = "status_checks"
    __table_args__ = (
        Index("idx_status_checks_user", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    contact_type: Mapped[str] = mapped_column(String(20), nullable=False)
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    send_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    response: Mapped[str | None] = mapped_column(String(20), nullable=True)  # StatusCheckResponse
    response_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Request opened by a "deceased" answer
    verification_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("verification_requests.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class DocumentAccessSession(Base):
    """
    Time-boxed executor access to the unlocked will and documents.

    expires_at is fixed at grant time and checked on every read;
    revoked_at is set server-side after a bulk archive download.
    """
    __tablename__ = "document_access_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    verification_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("verification_requests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    granted_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    verification_request: Mapped["VerificationRequest"] = relationship()


class VerificationLog(Base):
    """
    Append-only audit log keyed by user and action.

    Security:
    - Never stores PIN values or session tokens
    - Emails in details are hashed
    - Per-user hash chain makes tampering detectable
    """
    __tablename__ = "verification_logs"
    __table_args__ = (
        Index("idx_verification_logs_user", "user_id", "id"),
        Index("idx_verification_logs_action", "action", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # AuditAction
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Jobs
# =============================================================================

class Job(Base):
    """
    Background job for deferred processing.

    Used for: PIN distribution, check-in reminders, contact status checks.
    Worker polls for pending jobs and processes them.
    """
    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_pending", "status", "run_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
