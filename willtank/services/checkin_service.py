"""Check-in ledger - append-only history, latest row is authoritative."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from willtank.db.enums import AuditAction, CheckinStatus
from willtank.db.models import CheckinRecord, VerificationSettings
from willtank.db.types import utcnow
from willtank.services import audit_service, settings_service, verification_service

logger = logging.getLogger(__name__)


@dataclass
class CheckinStatusInfo:
    last_checked_in_at: datetime | None
    next_check_in: datetime | None
    grace_deadline: datetime | None
    days_remaining: int | None
    is_overdue: bool
    check_in_enabled: bool


def compute_next_check_in(checked_in_at: datetime, frequency_days: int) -> datetime:
    return checked_in_at + timedelta(days=frequency_days)


def grace_deadline(next_check_in: datetime, grace_period_days: int) -> datetime:
    return next_check_in + timedelta(days=grace_period_days)


def get_latest_checkin(db: Session, user_id: UUID) -> CheckinRecord | None:
    return (
        db.query(CheckinRecord)
        .filter(CheckinRecord.user_id == user_id)
        .order_by(CheckinRecord.checked_in_at.desc())
        .first()
    )


def list_checkins(db: Session, user_id: UUID, limit: int = 20) -> list[CheckinRecord]:
    return (
        db.query(CheckinRecord)
        .filter(CheckinRecord.user_id == user_id)
        .order_by(CheckinRecord.checked_in_at.desc())
        .limit(limit)
        .all()
    )


def record_checkin(
    db: Session,
    user_id: UUID,
    now: datetime | None = None,
    request=None,
    source: str = "user",
) -> CheckinRecord:
    """
    Append a check-in.

    next_check_in = now + check_in_frequency_days, status alive. Any open
    verification request is canceled in the same commit, so PINs already
    sent stop working and a queued distribution job finds nothing to send.
    """
    now = now or utcnow()
    user_settings: VerificationSettings = settings_service.get_or_create_settings(
        db, user_id, open_checkin=False
    )

    record = CheckinRecord(
        user_id=user_id,
        checked_in_at=now,
        next_check_in=compute_next_check_in(now, user_settings.check_in_frequency_days),
        status=CheckinStatus.ALIVE.value,
    )
    db.add(record)
    db.flush()
    audit_service.log_event(
        db,
        user_id=user_id,
        action=AuditAction.CHECK_IN,
        details={"next_check_in": record.next_check_in.isoformat(), "source": source},
        request=request,
    )
    verification_service.cancel_open_request(
        db, user_id, reason=f"check_in:{source}", now=now, http_request=request
    )
    db.commit()
    db.refresh(record)
    logger.info("User %s checked in; next due %s", user_id, record.next_check_in.isoformat())
    return record


def get_checkin_status(
    db: Session,
    user_id: UUID,
    now: datetime | None = None,
) -> CheckinStatusInfo:
    now = now or utcnow()
    user_settings = settings_service.get_or_create_settings(db, user_id)
    latest = get_latest_checkin(db, user_id)
    if latest is None:
        return CheckinStatusInfo(
            last_checked_in_at=None,
            next_check_in=None,
            grace_deadline=None,
            days_remaining=None,
            is_overdue=False,
            check_in_enabled=user_settings.check_in_enabled,
        )

    remaining = (latest.next_check_in - now).total_seconds() / 86400
    return CheckinStatusInfo(
        last_checked_in_at=latest.checked_in_at,
        next_check_in=latest.next_check_in,
        grace_deadline=grace_deadline(latest.next_check_in, user_settings.grace_period_days),
        days_remaining=max(0, math.ceil(remaining)),
        is_overdue=now > latest.next_check_in,
        check_in_enabled=user_settings.check_in_enabled,
    )
