"""PIN distribution - one 6-digit PIN per contact, emailed concurrently.

PIN rows, the unlock token and the pins_sent transition are committed
together before any email goes out. Email results are then stamped per
PIN (sent_at or send_error); a failed send never removes a PIN.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from willtank.core.security import generate_token
from willtank.db.enums import AuditAction, ContactType, VerificationStatus
from willtank.db.models import Contact, User, VerificationPin, VerificationRequest
from willtank.db.types import utcnow
from willtank.services import audit_service, contact_service, email_service, email_templates
from willtank.services.email_service import EmailResult
from willtank.services.verification_service import (
    InvalidTransitionError,
    NoContactsError,
    RequestExpiredError,
    VerificationServiceError,
    expire_if_due,
    transition,
)

logger = logging.getLogger(__name__)

PIN_LENGTH = 6


class PinEmailValidationError(VerificationServiceError):
    """Missing required fields for a single PIN email."""


class PinEmailSendError(VerificationServiceError):
    """The email provider rejected or failed a single PIN email."""


@dataclass
class DistributionResult:
    verification_id: UUID
    pins_created: int
    emails_sent: int
    emails_failed: int
    failed_pin_indexes: list[int] = field(default_factory=list)


def generate_pin_code() -> str:
    """Uniform 6-digit numeric code (100000-999999)."""
    return str(100000 + secrets.randbelow(900000))


def generate_pin_codes(count: int) -> list[str]:
    """Return `count` distinct 6-digit codes."""
    codes: list[str] = []
    seen: set[str] = set()
    while len(codes) < count:
        code = generate_pin_code()
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes


def _fail_no_contacts(db: Session, request: VerificationRequest) -> None:
    transition(request, VerificationStatus.FAILED)
    request.verification_result = "no_contacts"
    audit_service.log_event(
        db,
        user_id=request.user_id,
        action=AuditAction.VERIFICATION_FAILED,
        details={"verification_id": str(request.id), "reason": "no_contacts"},
    )
    db.commit()
    logger.warning("Verification request %s failed: no contacts", request.id)


def _create_pins(
    db: Session,
    request: VerificationRequest,
    contacts: list[Contact],
) -> list[VerificationPin]:
    codes = generate_pin_codes(len(contacts))
    pins = []
    for index, (contact, code) in enumerate(zip(contacts, codes)):
        pin = VerificationPin(
            verification_request_id=request.id,
            contact_id=contact.id,
            contact_type=contact.contact_type,
            contact_name=contact.name,
            contact_email=contact.email,
            pin_index=index,
            pin_code=code,
            used=False,
            expires_at=request.expires_at,
        )
        db.add(pin)
        pins.append(pin)
    return pins


async def _send_one(
    pin: VerificationPin,
    deceased_name: str,
    executor_name: str,
    unlock_token: str,
    pins_required: int,
) -> EmailResult:
    if not pin.contact_email:
        return EmailResult(success=False, error="Contact has no email address")

    if pin.contact_type == ContactType.EXECUTOR.value:
        subject, html = email_templates.executor_pin(
            executor_name=pin.contact_name,
            deceased_name=deceased_name,
            pin=pin.pin_code,
            unlock_token=unlock_token,
            pins_required=pins_required,
        )
    else:
        subject, html = email_templates.contact_pin(
            contact_name=pin.contact_name,
            deceased_name=deceased_name,
            executor_name=executor_name,
            pin=pin.pin_code,
        )
    return await email_service.send_email(
        to_email=pin.contact_email,
        subject=subject,
        html=html,
        tags={"type": "executor_pin", "priority": "high"},
        high_priority=True,
        idempotency_key=f"pin:{pin.id}",
    )


async def distribute_pins(
    db: Session,
    request: VerificationRequest,
    now: datetime | None = None,
) -> DistributionResult:
    """
    Generate, store and email one PIN per contact for a pending request.

    Raises:
        InvalidTransitionError: Request is not pending
        RequestExpiredError: Request passed expires_at (marked expired)
        NoContactsError: User has no contacts (request marked failed)
    """
    now = now or utcnow()
    if expire_if_due(db, request, now):
        raise RequestExpiredError("Verification request has expired")
    if request.status != VerificationStatus.PENDING.value:
        raise InvalidTransitionError(
            f"PINs can only be distributed for pending requests (status={request.status})"
        )

    contacts = contact_service.list_contacts_for_distribution(db, request.user_id)
    if not contacts:
        _fail_no_contacts(db, request)
        raise NoContactsError("No beneficiaries, executors or trusted contacts found")

    pins = _create_pins(db, request, contacts)
    request.unlock_token = generate_token()
    transition(request, VerificationStatus.PINS_SENT)
    audit_service.log_event(
        db,
        user_id=request.user_id,
        action=AuditAction.PINS_GENERATED,
        details={
            "verification_id": str(request.id),
            "pin_count": len(pins),
            "contact_types": sorted({p.contact_type for p in pins}),
        },
    )
    db.commit()
    logger.info("Stored %d PINs for verification request %s", len(pins), request.id)

    user = db.query(User).filter(User.id == request.user_id).first()
    deceased_name = user.display_name if user else "WillTank user"
    executor_name = next(
        (p.contact_name for p in pins if p.contact_type == ContactType.EXECUTOR.value),
        "the executor",
    )

    results = await asyncio.gather(
        *[
            _send_one(pin, deceased_name, executor_name, request.unlock_token, len(pins))
            for pin in pins
        ],
        return_exceptions=True,
    )

    sent_at = utcnow()
    failed_indexes: list[int] = []
    for pin, result in zip(pins, results):
        if isinstance(result, BaseException):
            pin.send_error = f"Unexpected error: {type(result).__name__}"
            failed_indexes.append(pin.pin_index)
            logger.error(
                "PIN email for verification %s slot %d raised %s",
                request.id,
                pin.pin_index,
                type(result).__name__,
            )
        elif result.success:
            pin.sent_at = sent_at
            pin.send_error = None
        else:
            pin.send_error = result.error or "Email send failed"
            failed_indexes.append(pin.pin_index)

    audit_service.log_event(
        db,
        user_id=request.user_id,
        action=AuditAction.PIN_EMAIL_SENT,
        details={
            "verification_id": str(request.id),
            "sent": len(pins) - len(failed_indexes),
            "failed": len(failed_indexes),
        },
    )
    db.commit()

    if failed_indexes:
        logger.warning(
            "Verification %s: %d of %d PIN emails failed",
            request.id,
            len(failed_indexes),
            len(pins),
        )

    return DistributionResult(
        verification_id=request.id,
        pins_created=len(pins),
        emails_sent=len(pins) - len(failed_indexes),
        emails_failed=len(failed_indexes),
        failed_pin_indexes=failed_indexes,
    )


async def send_pin_email(
    db: Session,
    *,
    contact_id: UUID | None,
    contact_name: str | None,
    contact_email: str | None,
    executor_email: str | None,
    executor_name: str | None,
    deceased_name: str | None,
    pin: str | None,
) -> EmailResult:
    """
    Send one PIN email to a contact for relay to the executor.

    Raises:
        PinEmailValidationError: contact_email, pin, deceased_name or executor_email missing
        PinEmailSendError: Provider failure
    """
    if not contact_email or not pin or not deceased_name or not executor_email:
        raise PinEmailValidationError("Missing required information")

    subject, html = email_templates.contact_pin(
        contact_name=contact_name or "there",
        deceased_name=deceased_name,
        executor_name=executor_name or executor_email,
        pin=pin,
    )
    result = await email_service.send_email(
        to_email=contact_email,
        subject=subject,
        html=html,
        tags={"type": "executor_pin", "priority": "high"},
        high_priority=True,
    )
    if not result.success:
        raise PinEmailSendError(result.error or "Failed to send PIN email")

    contact = None
    if contact_id:
        contact = db.query(Contact).filter(Contact.id == contact_id).first()
    if contact:
        audit_service.log_event(
            db,
            user_id=contact.user_id,
            action=AuditAction.PIN_EMAIL_SENT,
            details={
                "contact_id": str(contact.id),
                "executor_email": audit_service.hash_email(executor_email),
                "email_id": result.message_id,
            },
        )
        db.commit()
    logger.info("Single PIN email sent to contact %s", contact_id)
    return result
