"""Contact status checks - ask the user's contacts whether the user is alive.

Each contact with an e-mail address gets a single-use link. The first
answer decides:
- alive: recorded as a check-in on the user's behalf, which cancels any
  open verification request and restarts the check-in clock
- deceased: opens a verification request (trigger contact_report) with
  PIN distribution queued, unless one is already open
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from willtank.core.config import settings
from willtank.core.security import generate_token
from willtank.db.enums import AuditAction, JobType, StatusCheckResponse, TriggerReason
from willtank.db.models import Job, StatusCheck, User
from willtank.db.types import utcnow
from willtank.services import (
    audit_service,
    checkin_service,
    contact_service,
    email_service,
    email_templates,
    job_service,
    verification_service,
)
from willtank.services.verification_service import NoContactsError

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


class StatusCheckError(Exception):
    """Base error for status check responses."""


class StatusCheckNotFoundError(StatusCheckError):
    pass


class StatusCheckExpiredError(StatusCheckError):
    pass


class StatusCheckAnsweredError(StatusCheckError):
    """The link was already used."""


@dataclass
class SendResult:
    total: int
    successful: int
    failed: int


@dataclass
class ResponseOutcome:
    response: str
    verification_id: UUID | None = None
    request_created: bool = False
    canceled_verification_id: UUID | None = None


def schedule_status_checks(db: Session, user_id: UUID) -> Job:
    """Queue a send_status_check job for the worker."""
    job = job_service.schedule_job(
        db,
        job_type=JobType.SEND_STATUS_CHECK,
        payload={"user_id": str(user_id)},
        user_id=user_id,
    )
    logger.info("Queued status check job %s for user %s", job.id, user_id)
    return job


async def send_status_checks(
    db: Session,
    user_id: UUID,
    now: datetime | None = None,
) -> SendResult:
    """
    Create one StatusCheck per contact with an e-mail and send the links.

    Rows are committed before sending; each is then stamped with sent_at
    or send_error.

    Raises:
        NoContactsError: No contact has an e-mail address
    """
    now = now or utcnow()
    contacts = [
        c for c in contact_service.list_contacts_for_distribution(db, user_id) if c.email
    ]
    if not contacts:
        raise NoContactsError("No contacts with an email address found")

    checks = []
    for contact in contacts:
        check = StatusCheck(
            user_id=user_id,
            contact_id=contact.id,
            contact_type=contact.contact_type,
            contact_name=contact.name,
            contact_email=contact.email,
            token=generate_token(),
            expires_at=now + timedelta(days=settings.STATUS_CHECK_TTL_DAYS),
        )
        db.add(check)
        checks.append(check)
    db.commit()

    user = db.query(User).filter(User.id == user_id).first()
    user_name = user.display_name if user else "A WillTank user"
    executor = contact_service.get_primary_executor(db, user_id)

    async def _send(check: StatusCheck):
        subject, html = email_templates.status_check(
            contact_name=check.contact_name,
            user_name=user_name,
            token=check.token,
            executor_name=executor.name if executor else None,
            executor_email=executor.email if executor else None,
        )
        return await email_service.send_email(
            to_email=check.contact_email,
            subject=subject,
            html=html,
            tags={"type": "status_check", "contact_type": check.contact_type},
            idempotency_key=f"status_check:{check.id}",
        )

    results = await asyncio.gather(*[_send(c) for c in checks], return_exceptions=True)

    sent_at = utcnow()
    failed = 0
    for check, result in zip(checks, results):
        if isinstance(result, BaseException):
            check.send_error = f"Unexpected error: {type(result).__name__}"
            failed += 1
        elif result.success:
            check.sent_at = sent_at
        else:
            check.send_error = result.error or "Email send failed"
            failed += 1

    audit_service.log_event(
        db,
        user_id=user_id,
        action=AuditAction.STATUS_CHECK_SENT,
        details={"total": len(checks), "sent": len(checks) - failed, "failed": failed},
    )
    db.commit()

    if failed:
        logger.warning("Status checks for user %s: %d of %d emails failed", user_id, failed, len(checks))
    return SendResult(total=len(checks), successful=len(checks) - failed, failed=failed)


def get_by_token(db: Session, token: str) -> StatusCheck | None:
    if not token:
        return None
    return db.query(StatusCheck).filter(StatusCheck.token == token).first()


def record_response(
    db: Session,
    token: str,
    response: StatusCheckResponse,
    message: str | None = None,
    now: datetime | None = None,
    http_request=None,
) -> ResponseOutcome:
    """
    Record a contact's answer and act on it.

    Raises:
        StatusCheckNotFoundError: Unknown token
        StatusCheckAnsweredError: Token already used
        StatusCheckExpiredError: Past expires_at
    """
    now = now or utcnow()
    check = get_by_token(db, token)
    if not check:
        raise StatusCheckNotFoundError("Status check not found")
    if check.responded_at is not None:
        raise StatusCheckAnsweredError("This status check has already been answered")
    if now >= check.expires_at:
        raise StatusCheckExpiredError("This status check has expired")

    check.response = response.value
    check.response_message = (message or "").strip()[:MAX_MESSAGE_LENGTH] or None
    check.responded_at = now
    audit_service.log_event(
        db,
        user_id=check.user_id,
        action=(
            AuditAction.STATUS_CHECK_ALIVE
            if response == StatusCheckResponse.ALIVE
            else AuditAction.STATUS_CHECK_DECEASED
        ),
        details={
            "status_check_id": str(check.id),
            "contact_type": check.contact_type,
            "has_message": check.response_message is not None,
        },
        request=http_request,
    )

    if response == StatusCheckResponse.ALIVE:
        open_request = verification_service.get_open_request(db, check.user_id)
        canceled_id = open_request.id if open_request else None
        # Commits the response, its audit entry and the cancel together
        checkin_service.record_checkin(
            db,
            check.user_id,
            now=now,
            request=http_request,
            source=f"status_check:{check.contact_type}",
        )
        return ResponseOutcome(response=response.value, canceled_verification_id=canceled_id)

    db.commit()
    request, created = verification_service.open_request(
        db,
        user_id=check.user_id,
        trigger_reason=TriggerReason.CONTACT_REPORT,
        initiated_by=check.contact_type,
        now=now,
        schedule_distribution=True,
        http_request=http_request,
    )
    check.verification_request_id = request.id
    db.commit()
    logger.info(
        "Death reported for user %s via status check %s (request %s, created=%s)",
        check.user_id,
        check.id,
        request.id,
        created,
    )
    return ResponseOutcome(
        response=response.value,
        verification_id=request.id,
        request_created=created,
    )
