"""Executor unlock - validate the full ordered PIN set for a request.

Comparison is exact and per slot: entered[i] must equal the PIN at
pin_index i. A mismatch reports the offending indexes and leaves the
request status unchanged; the executor may retry without limit.

On a full match the request moves verified -> completed -> will_unlocked,
audit entries are written and a DocumentAccessSession is granted, all in
one commit.
"""

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from willtank.db.enums import AuditAction, VerificationStatus
from willtank.db.models import VerificationPin, VerificationRequest
from willtank.db.types import utcnow
from willtank.services import audit_service, document_access_service
from willtank.services.verification_service import (
    RequestExpiredError,
    RequestNotFoundError,
    VerificationServiceError,
    expire_if_due,
    get_request,
    transition,
)

logger = logging.getLogger(__name__)


class UnlockError(VerificationServiceError):
    """Base error for PIN submission."""


class PinCountMismatchError(UnlockError):
    pass


class UnlockNotAvailableError(UnlockError):
    """Request is not in a state that accepts PINs (pending, failed)."""


class ArchiveAlreadyDownloadedError(UnlockError):
    pass


@dataclass
class UnlockResult:
    success: bool
    status: str
    invalid_pins: list[int] = field(default_factory=list)
    message: str = ""
    access_token: str | None = None
    access_expires_at: datetime | None = None


def _matches(entered: str, stored: str) -> bool:
    return hmac.compare_digest(entered.strip().encode(), stored.encode())


def _check_submittable(db: Session, request: VerificationRequest, now: datetime) -> None:
    if request.archive_downloaded_at is not None:
        raise ArchiveAlreadyDownloadedError(
            "Documents were already downloaded for this verification"
        )
    if request.status == VerificationStatus.WILL_UNLOCKED.value:
        if now >= request.expires_at:
            raise RequestExpiredError("Verification request has expired")
        return
    if expire_if_due(db, request, now):
        raise RequestExpiredError("Verification request has expired")
    if request.status not in (
        VerificationStatus.PINS_SENT.value,
        VerificationStatus.VERIFIED.value,
    ):
        raise UnlockNotAvailableError(
            f"Verification is not accepting PINs (status={request.status})"
        )


def _unlock(db: Session, request: VerificationRequest, now: datetime, http_request) -> None:
    if request.status == VerificationStatus.PINS_SENT.value:
        transition(request, VerificationStatus.VERIFIED)
        audit_service.log_event(
            db,
            user_id=request.user_id,
            action=AuditAction.VERIFICATION_VERIFIED,
            details={"verification_id": str(request.id)},
            request=http_request,
        )
    transition(request, VerificationStatus.COMPLETED)
    request.completed_at = now
    request.verification_result = "verified"
    transition(request, VerificationStatus.WILL_UNLOCKED)
    audit_service.log_event(
        db,
        user_id=request.user_id,
        action=AuditAction.WILL_UNLOCKED,
        details={"verification_id": str(request.id)},
        request=http_request,
    )


def submit_pins(
    db: Session,
    verification_id: UUID,
    pins: list[str],
    now: datetime | None = None,
    http_request=None,
) -> UnlockResult:
    """
    Validate an ordered PIN list for a verification request.

    Raises:
        RequestNotFoundError: Unknown verification id
        RequestExpiredError: Past expires_at (open requests are marked expired)
        PinCountMismatchError: len(pins) differs from the stored PIN count
        UnlockNotAvailableError: Request not in pins_sent/verified
        ArchiveAlreadyDownloadedError: Access was already consumed
    """
    now = now or utcnow()
    request = get_request(db, verification_id)
    if not request:
        raise RequestNotFoundError("Verification request not found")

    _check_submittable(db, request, now)

    stored: list[VerificationPin] = sorted(request.pins, key=lambda p: p.pin_index)
    if len(pins) != len(stored):
        raise PinCountMismatchError(
            f"Expected {len(stored)} PINs, received {len(pins)}"
        )

    invalid: list[int] = []
    for index, (entered, pin) in enumerate(zip(pins, stored)):
        if _matches(entered or "", pin.pin_code):
            if not pin.used:
                pin.used = True
                pin.used_at = now
        else:
            invalid.append(index)

    if invalid:
        audit_service.log_event(
            db,
            user_id=request.user_id,
            action=AuditAction.PIN_SUBMISSION_FAILED,
            details={"verification_id": str(request.id), "invalid_count": len(invalid)},
            request=http_request,
        )
        db.commit()
        logger.info(
            "PIN submission for verification %s: %d of %d invalid",
            request.id,
            len(invalid),
            len(stored),
        )
        return UnlockResult(
            success=False,
            status=request.status,
            invalid_pins=invalid,
            message=f"{len(invalid)} PIN(s) are incorrect. Please check and try again.",
        )

    if request.status != VerificationStatus.WILL_UNLOCKED.value:
        _unlock(db, request, now, http_request)
    else:
        # Re-entry before the archive was taken: replace any live session
        document_access_service.revoke_sessions_for_request(db, request.id, now)

    session = document_access_service.grant_session(db, request, now)
    db.commit()
    logger.info("Verification %s unlocked", request.id)
    return UnlockResult(
        success=True,
        status=request.status,
        message="All PINs verified. Document access granted.",
        access_token=session.token,
        access_expires_at=session.expires_at,
    )
