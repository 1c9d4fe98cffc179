"""Verification request lifecycle - one request per detected overdue episode.

Status flow:
    pending -> pins_sent -> verified -> completed -> will_unlocked
    pending | pins_sent | verified -> expired | failed | canceled

At most one open (pending, pins_sent, verified) request exists per user.
The storage layer enforces this with a partial unique index; a violation
on insert is treated as "already open".
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from willtank.core.config import settings
from willtank.db.enums import AuditAction, ContactType, JobType, TriggerReason, VerificationStatus
from willtank.db.models import User, VerificationPin, VerificationRequest
from willtank.db.types import utcnow
from willtank.services import audit_service, job_service

logger = logging.getLogger(__name__)


class VerificationServiceError(Exception):
    """Base error for verification request operations."""


class RequestNotFoundError(VerificationServiceError):
    pass


class RequestExpiredError(VerificationServiceError):
    pass


class InvalidTransitionError(VerificationServiceError):
    pass


class NoContactsError(VerificationServiceError):
    """User has no beneficiaries, executors or trusted contacts to send PINs to."""


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    VerificationStatus.PENDING.value: {
        VerificationStatus.PINS_SENT.value,
        VerificationStatus.EXPIRED.value,
        VerificationStatus.FAILED.value,
        VerificationStatus.CANCELED.value,
    },
    VerificationStatus.PINS_SENT.value: {
        VerificationStatus.VERIFIED.value,
        VerificationStatus.EXPIRED.value,
        VerificationStatus.FAILED.value,
        VerificationStatus.CANCELED.value,
    },
    VerificationStatus.VERIFIED.value: {
        VerificationStatus.COMPLETED.value,
        VerificationStatus.EXPIRED.value,
        VerificationStatus.FAILED.value,
        VerificationStatus.CANCELED.value,
    },
    VerificationStatus.COMPLETED.value: {VerificationStatus.WILL_UNLOCKED.value},
    VerificationStatus.WILL_UNLOCKED.value: set(),
    VerificationStatus.EXPIRED.value: set(),
    VerificationStatus.FAILED.value: set(),
    VerificationStatus.CANCELED.value: set(),
}


@dataclass
class PinSlot:
    index: int
    contact_type: str
    contact_name: str
    used: bool


@dataclass
class ExecutorStatus:
    verification_id: UUID
    status: str
    pins_required: int
    pins_received: int
    expires_at: datetime
    user_name: str
    executor_name: str | None
    slots: list[PinSlot] = field(default_factory=list)


@dataclass
class TriggerResult:
    request: VerificationRequest
    created: bool
    distribution: object | None = None


def transition(request: VerificationRequest, new_status: VerificationStatus) -> None:
    """Move a request to new_status or raise InvalidTransitionError."""
    allowed = ALLOWED_TRANSITIONS.get(request.status, set())
    if new_status.value not in allowed:
        raise InvalidTransitionError(
            f"Cannot move verification request from {request.status} to {new_status.value}"
        )
    request.status = new_status.value


def is_open(request: VerificationRequest) -> bool:
    return request.status in VerificationStatus.open_values()


def is_expired(request: VerificationRequest, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return now >= request.expires_at


def expire_if_due(
    db: Session,
    request: VerificationRequest,
    now: datetime | None = None,
) -> bool:
    """
    Mark an open request expired once its deadline has passed.

    Returns True when the request is (now) expired.
    """
    if request.status == VerificationStatus.EXPIRED.value:
        return True
    if not is_open(request) or not is_expired(request, now):
        return False

    transition(request, VerificationStatus.EXPIRED)
    request.verification_result = "expired"
    audit_service.log_event(
        db,
        user_id=request.user_id,
        action=AuditAction.VERIFICATION_EXPIRED,
        details={"verification_id": str(request.id)},
    )
    db.commit()
    logger.info("Verification request %s expired", request.id)
    return True


def expire_stale_requests(db: Session, now: datetime | None = None) -> int:
    """Sweep open requests past expires_at. Returns number expired."""
    now = now or utcnow()
    stale = (
        db.query(VerificationRequest)
        .filter(
            VerificationRequest.status.in_(VerificationStatus.open_values()),
            VerificationRequest.expires_at <= now,
        )
        .all()
    )
    count = 0
    for request in stale:
        if expire_if_due(db, request, now):
            count += 1
    return count


def get_request(db: Session, verification_id: UUID) -> VerificationRequest | None:
    return db.query(VerificationRequest).filter(VerificationRequest.id == verification_id).first()


def get_request_by_unlock_token(db: Session, unlock_token: str) -> VerificationRequest | None:
    if not unlock_token:
        return None
    return (
        db.query(VerificationRequest)
        .filter(VerificationRequest.unlock_token == unlock_token)
        .first()
    )


def get_open_request(db: Session, user_id: UUID) -> VerificationRequest | None:
    return (
        db.query(VerificationRequest)
        .filter(
            VerificationRequest.user_id == user_id,
            VerificationRequest.status.in_(VerificationStatus.open_values()),
        )
        .order_by(VerificationRequest.created_at.desc())
        .first()
    )


def has_closed_episode(db: Session, user_id: UUID, since: datetime) -> bool:
    """
    True when a request opened after `since` already ended without expiring.

    Failed or unlocked episodes are not reopened until the user checks in again.
    Canceled requests are not counted: canceling always comes with a fresh
    check-in, which starts a new episode.
    """
    return (
        db.query(VerificationRequest.id)
        .filter(
            VerificationRequest.user_id == user_id,
            VerificationRequest.created_at >= since,
            VerificationRequest.status.in_(
                (
                    VerificationStatus.FAILED.value,
                    VerificationStatus.COMPLETED.value,
                    VerificationStatus.WILL_UNLOCKED.value,
                )
            ),
        )
        .first()
        is not None
    )


def list_requests_for_user(
    db: Session,
    user_id: UUID,
    now: datetime | None = None,
) -> list[VerificationRequest]:
    requests = (
        db.query(VerificationRequest)
        .filter(VerificationRequest.user_id == user_id)
        .order_by(VerificationRequest.created_at.desc())
        .all()
    )
    for request in requests:
        expire_if_due(db, request, now)
    return requests


def cancel_open_request(
    db: Session,
    user_id: UUID,
    reason: str,
    now: datetime | None = None,
    http_request=None,
) -> VerificationRequest | None:
    """
    Cancel the user's open request after proof of life.

    Joins the caller's transaction (no commit). Returns the canceled
    request, or None when nothing was open.
    """
    request = get_open_request(db, user_id)
    if request is None:
        return None

    transition(request, VerificationStatus.CANCELED)
    request.completed_at = now or utcnow()
    request.verification_result = reason
    audit_service.log_event(
        db,
        user_id=user_id,
        action=AuditAction.VERIFICATION_CANCELED,
        details={"verification_id": str(request.id), "reason": reason},
        request=http_request,
    )
    logger.info("Verification request %s canceled (%s)", request.id, reason)
    return request


def open_request(
    db: Session,
    user_id: UUID,
    trigger_reason: TriggerReason,
    initiated_by: str,
    now: datetime | None = None,
    schedule_distribution: bool = False,
    http_request=None,
) -> tuple[VerificationRequest, bool]:
    """
    Open a verification request for the user unless one is already open.

    The request, its audit entry and (optionally) the PIN distribution job
    are written in one commit.

    Returns:
        (request, created)
    """
    now = now or utcnow()

    existing = get_open_request(db, user_id)
    if existing and not expire_if_due(db, existing, now):
        return existing, False

    request = VerificationRequest(
        id=uuid.uuid4(),
        user_id=user_id,
        status=VerificationStatus.PENDING.value,
        trigger_reason=trigger_reason.value,
        initiated_by=initiated_by,
        expires_at=now + timedelta(days=settings.VERIFICATION_REQUEST_TTL_DAYS),
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(request)
        audit_service.log_event(
            db,
            user_id=user_id,
            action=AuditAction.VERIFICATION_TRIGGERED,
            details={
                "verification_id": str(request.id),
                "trigger_reason": trigger_reason.value,
                "initiated_by": initiated_by,
            },
            request=http_request,
        )
        if schedule_distribution:
            job_service.schedule_job(
                db,
                job_type=JobType.DISTRIBUTE_PINS,
                payload={"verification_id": str(request.id)},
                user_id=user_id,
                run_at=now + timedelta(hours=settings.PIN_DISTRIBUTION_DELAY_HOURS),
                idempotency_key=f"distribute_pins:{request.id}",
                commit=False,
            )
        db.commit()
    except IntegrityError:
        # Concurrent detection opened one first
        db.rollback()
        existing = get_open_request(db, user_id)
        if existing is None:
            raise
        logger.info("Verification request already open for user %s", user_id)
        return existing, False

    db.refresh(request)
    logger.info(
        "Opened verification request %s for user %s (%s)",
        request.id,
        user_id,
        trigger_reason.value,
    )
    return request, True


async def trigger_verification(
    db: Session,
    user_id: UUID,
    initiated_by: str = "manual",
    trigger_reason: TriggerReason = TriggerReason.MANUAL,
    http_request=None,
) -> TriggerResult:
    """
    Open or advance the user's verification request.

    A pending request is distributed immediately rather than through the
    job queue.
    """
    from willtank.services import pin_service

    request, created = open_request(
        db,
        user_id=user_id,
        trigger_reason=trigger_reason,
        initiated_by=initiated_by,
        http_request=http_request,
    )
    distribution = None
    if request.status == VerificationStatus.PENDING.value:
        distribution = await pin_service.distribute_pins(db, request)
    return TriggerResult(request=request, created=created, distribution=distribution)


def get_executor_status(
    db: Session,
    verification_id: UUID,
    now: datetime | None = None,
) -> ExecutorStatus:
    """
    Public status for the executor unlock page.

    Raises:
        RequestNotFoundError: Unknown verification id
        RequestExpiredError: Past expires_at (request is marked expired)
    """
    request = get_request(db, verification_id)
    if not request:
        raise RequestNotFoundError("Verification request not found")
    if expire_if_due(db, request, now):
        raise RequestExpiredError("Verification request has expired")
    if request.status in (VerificationStatus.FAILED.value, VerificationStatus.CANCELED.value):
        raise RequestNotFoundError("Verification request is no longer active")

    pins: list[VerificationPin] = list(request.pins)
    user = db.query(User).filter(User.id == request.user_id).first()
    executor_name = next(
        (p.contact_name for p in pins if p.contact_type == ContactType.EXECUTOR.value),
        None,
    )
    return ExecutorStatus(
        verification_id=request.id,
        status=request.status,
        pins_required=len(pins),
        pins_received=sum(1 for p in pins if p.used),
        expires_at=request.expires_at,
        user_name=user.display_name if user else "WillTank user",
        executor_name=executor_name,
        slots=[
            PinSlot(
                index=p.pin_index,
                contact_type=p.contact_type,
                contact_name=p.contact_name,
                used=p.used,
            )
            for p in pins
        ],
    )
