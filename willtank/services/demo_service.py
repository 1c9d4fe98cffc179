"""Dev-only harness for exercising executor access end to end.

Mounted only when ENV == "dev". get_verification_status returns PIN codes
so a tester can walk the unlock flow without a mailbox.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from willtank.db.enums import AuditAction, ContactType, TriggerReason
from willtank.db.models import Contact, VerificationRequest, VerificationSettings
from willtank.schemas.death_verification import SettingsUpdate
from willtank.services import (
    audit_service,
    checkin_service,
    contact_service,
    settings_service,
    user_service,
    verification_service,
)
from willtank.services.verification_service import NoContactsError

logger = logging.getLogger(__name__)

ACTIONS = (
    "setup_test_data",
    "trigger_death_verification",
    "get_verification_status",
    "cleanup_test_data",
)

TEST_FREQUENCY_DAYS = 7
TEST_GRACE_DAYS = 1


class UnknownActionError(ValueError):
    pass


def setup_test_data(db: Session, user_id: UUID) -> dict[str, Any]:
    """Two beneficiaries, two executors (first is primary), settings 7/1 from now."""
    short = user_id.hex[:6]
    created = []
    for i in (1, 2):
        created.append(
            contact_service.create_contact(
                db,
                user_id=user_id,
                contact_type=ContactType.BENEFICIARY,
                name=f"Test Beneficiary {i}",
                email=f"test-beneficiary-{i}-{short}@example.com",
                relationship="test",
            )
        )
    for i in (1, 2):
        created.append(
            contact_service.create_contact(
                db,
                user_id=user_id,
                contact_type=ContactType.EXECUTOR,
                name=f"Test Executor {i}",
                email=f"test-executor-{i}-{short}@example.com",
                relationship="test",
                is_primary=(i == 1),
            )
        )

    settings_service.get_or_create_settings(db, user_id, open_checkin=False)
    row = settings_service.update_settings(
        db,
        user_id,
        SettingsUpdate(
            check_in_frequency_days=TEST_FREQUENCY_DAYS,
            grace_period_days=TEST_GRACE_DAYS,
            check_in_enabled=True,
        ),
    )
    checkin = checkin_service.record_checkin(db, user_id, source="test")

    return {
        "success": True,
        "message": "Test data created",
        "contacts_created": len(created),
        "settings": {
            "check_in_frequency_days": row.check_in_frequency_days,
            "grace_period_days": row.grace_period_days,
        },
        "next_check_in": checkin.next_check_in.isoformat(),
    }


async def trigger_death_verification(db: Session, user_id: UUID) -> dict[str, Any]:
    try:
        result = await verification_service.trigger_verification(
            db,
            user_id=user_id,
            initiated_by="test",
            trigger_reason=TriggerReason.TEST,
        )
    except NoContactsError as e:
        return {"success": False, "message": str(e)}

    request = result.request
    distribution = result.distribution
    return {
        "success": True,
        "verification_id": str(request.id),
        "status": request.status,
        "created": result.created,
        "pins_created": distribution.pins_created if distribution else 0,
    }


def get_verification_status(db: Session, user_id: UUID) -> dict[str, Any]:
    request = (
        db.query(VerificationRequest)
        .filter(VerificationRequest.user_id == user_id)
        .order_by(VerificationRequest.created_at.desc())
        .first()
    )
    contact_count = db.query(Contact).filter(Contact.user_id == user_id).count()
    settings_row = settings_service.get_settings(db, user_id)
    if not request:
        return {
            "success": True,
            "verification": None,
            "contacts": contact_count,
            "has_settings": settings_row is not None,
        }

    verification_service.expire_if_due(db, request)
    return {
        "success": True,
        "verification": {
            "id": str(request.id),
            "status": request.status,
            "expires_at": request.expires_at.isoformat(),
            "unlock_token": request.unlock_token,
            "pins": [
                {
                    "index": p.pin_index,
                    "contact_type": p.contact_type,
                    "contact_name": p.contact_name,
                    "pin_code": p.pin_code,
                    "used": p.used,
                    "sent": p.sent_at is not None,
                    "send_error": p.send_error,
                }
                for p in request.pins
            ],
        },
        "contacts": contact_count,
        "has_settings": settings_row is not None,
    }


def cleanup_test_data(db: Session, user_id: UUID) -> dict[str, Any]:
    """Remove contacts and settings. Verification history and audit log stay."""
    contacts_deleted = (
        db.query(Contact).filter(Contact.user_id == user_id).delete(synchronize_session=False)
    )
    settings_deleted = (
        db.query(VerificationSettings)
        .filter(VerificationSettings.user_id == user_id)
        .delete(synchronize_session=False)
    )
    audit_service.log_event(
        db,
        user_id=user_id,
        action=AuditAction.TEST_DATA_CLEANED,
        details={"contacts_deleted": contacts_deleted, "settings_deleted": settings_deleted},
    )
    db.commit()
    db.expire_all()
    return {
        "success": True,
        "message": "Test data cleaned up",
        "contacts_deleted": contacts_deleted,
    }


async def invoke(db: Session, action: str, user_id: UUID) -> dict[str, Any]:
    if action not in ACTIONS:
        raise UnknownActionError(f"Unknown action: {action}")
    user_service.get_or_create_user(db, user_id)
    if action == "setup_test_data":
        return setup_test_data(db, user_id)
    if action == "trigger_death_verification":
        return await trigger_death_verification(db, user_id)
    if action == "get_verification_status":
        return get_verification_status(db, user_id)
    return cleanup_test_data(db, user_id)
