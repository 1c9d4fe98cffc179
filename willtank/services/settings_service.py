"""Verification settings store - one row per user, created lazily with defaults."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from willtank.core.config import settings as app_settings
from willtank.db.enums import AuditAction, CheckinStatus, NotificationChannel, UnlockMode
from willtank.db.models import CheckinRecord, VerificationSettings
from willtank.db.types import utcnow
from willtank.schemas.death_verification import SettingsUpdate
from willtank.services import audit_service

logger = logging.getLogger(__name__)


class SettingsValidationError(ValueError):
    """Raised when a settings update violates frequency/grace bounds."""


def get_settings(db: Session, user_id: UUID) -> VerificationSettings | None:
    return (
        db.query(VerificationSettings)
        .filter(VerificationSettings.user_id == user_id)
        .first()
    )


def _open_first_checkin(db: Session, user_id: UUID, frequency_days: int, now: datetime) -> None:
    exists = db.query(CheckinRecord.id).filter(CheckinRecord.user_id == user_id).first()
    if exists:
        return
    db.add(
        CheckinRecord(
            user_id=user_id,
            checked_in_at=now,
            next_check_in=now + timedelta(days=frequency_days),
            status=CheckinStatus.ALIVE.value,
        )
    )


def get_or_create_settings(
    db: Session,
    user_id: UUID,
    open_checkin: bool = True,
    now: datetime | None = None,
) -> VerificationSettings:
    """
    Return the user's settings, creating defaults on first access.

    Defaults: 30 day frequency, 7 day grace, enabled, email notifications,
    PIN unlock. The first CheckinRecord is opened alongside unless the
    caller is about to write one itself.
    """
    existing = get_settings(db, user_id)
    if existing:
        return existing

    row = VerificationSettings(
        user_id=user_id,
        check_in_frequency_days=app_settings.DEFAULT_CHECK_IN_FREQUENCY_DAYS,
        grace_period_days=app_settings.DEFAULT_GRACE_PERIOD_DAYS,
        check_in_enabled=True,
        notification_preferences=[NotificationChannel.EMAIL.value],
        unlock_mode=UnlockMode.PIN.value,
    )
    db.add(row)
    if open_checkin:
        _open_first_checkin(db, user_id, row.check_in_frequency_days, now or utcnow())
    try:
        db.commit()
    except IntegrityError:
        # Unique settings row per user; another request won the race
        db.rollback()
        existing = get_settings(db, user_id)
        if existing is None:
            raise
        return existing

    db.refresh(row)
    logger.info("Created default verification settings for user %s", user_id)
    return row


def update_settings(
    db: Session,
    user_id: UUID,
    data: SettingsUpdate,
    request=None,
) -> VerificationSettings:
    """Apply a partial update from the owning user."""
    row = get_or_create_settings(db, user_id)
    changes = data.model_dump(exclude_unset=True)

    frequency = changes.get("check_in_frequency_days")
    if "check_in_frequency_days" in changes and (frequency is None or frequency <= 0):
        raise SettingsValidationError("check_in_frequency_days must be greater than 0")
    grace = changes.get("grace_period_days")
    if "grace_period_days" in changes and (grace is None or grace < 0):
        raise SettingsValidationError("grace_period_days must be 0 or greater")

    applied: dict[str, object] = {}
    for field, value in changes.items():
        if value is None:
            continue
        if field == "notification_preferences":
            value = sorted({NotificationChannel(v).value for v in value})
        elif field == "unlock_mode":
            value = UnlockMode(value).value
        if getattr(row, field) != value:
            setattr(row, field, value)
            applied[field] = value

    if applied:
        audit_service.log_event(
            db,
            user_id=user_id,
            action=AuditAction.SETTINGS_UPDATED,
            details={"changed": applied},
            request=request,
        )
    db.commit()
    db.refresh(row)
    return row
