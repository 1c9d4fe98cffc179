"""Inactivity scanner - externally triggered sweep of overdue check-ins.

For each user whose latest check-in is past due:
- within grace: mark the check-in overdue and queue one reminder email
- past grace (strictly): open a verification request and queue PIN distribution

Detection is idempotent: an open request blocks a new one, and the storage
layer rejects a concurrent duplicate.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from willtank.core.structured_logging import build_log_context
from willtank.db.enums import AuditAction, CheckinStatus, JobType, TriggerReason
from willtank.db.models import CheckinRecord, VerificationSettings
from willtank.db.types import utcnow
from willtank.services import audit_service, job_service, verification_service
from willtank.services.checkin_service import grace_deadline

logger = logging.getLogger(__name__)

SYSTEM_INITIATOR = "system"


@dataclass
class ScanResult:
    scanned: int = 0
    reminders_scheduled: int = 0
    requests_created: int = 0
    already_open: int = 0
    errors: int = 0
    created_request_ids: list[UUID] = field(default_factory=list)


def _latest_due_checkins(db: Session, now: datetime) -> list[tuple[CheckinRecord, VerificationSettings]]:
    latest = (
        db.query(
            CheckinRecord.user_id.label("user_id"),
            func.max(CheckinRecord.checked_in_at).label("checked_in_at"),
        )
        .group_by(CheckinRecord.user_id)
        .subquery()
    )
    return (
        db.query(CheckinRecord, VerificationSettings)
        .join(
            latest,
            (CheckinRecord.user_id == latest.c.user_id)
            & (CheckinRecord.checked_in_at == latest.c.checked_in_at),
        )
        .join(VerificationSettings, VerificationSettings.user_id == CheckinRecord.user_id)
        .filter(
            VerificationSettings.check_in_enabled.is_(True),
            CheckinRecord.next_check_in <= now,
        )
        .order_by(CheckinRecord.next_check_in)
        .all()
    )


def _schedule_reminder(
    db: Session,
    record: CheckinRecord,
    user_settings: VerificationSettings,
    now: datetime,
) -> bool:
    if record.status == CheckinStatus.OVERDUE.value:
        return False

    record.status = CheckinStatus.OVERDUE.value
    audit_service.log_event(
        db,
        user_id=record.user_id,
        action=AuditAction.CHECK_IN_OVERDUE,
        details={"next_check_in": record.next_check_in.isoformat()},
    )
    job_service.schedule_job(
        db,
        job_type=JobType.CHECKIN_REMINDER,
        payload={
            "user_id": str(record.user_id),
            "checkin_id": str(record.id),
            "grace_deadline": grace_deadline(
                record.next_check_in, user_settings.grace_period_days
            ).isoformat(),
        },
        user_id=record.user_id,
        run_at=now,
        idempotency_key=f"checkin_reminder:{record.id}",
        commit=False,
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


def run_scan(db: Session, now: datetime | None = None) -> ScanResult:
    """
    Run one pass of the inactivity scanner.

    A failure for one user is logged and counted; the scan continues.
    """
    now = now or utcnow()
    result = ScanResult()
    candidates = _latest_due_checkins(db, now)

    for record, user_settings in candidates:
        result.scanned += 1
        user_id = record.user_id
        try:
            deadline = grace_deadline(record.next_check_in, user_settings.grace_period_days)
            overdue_by = now - deadline

            if overdue_by.total_seconds() <= 0:
                if _schedule_reminder(db, record, user_settings, now):
                    result.reminders_scheduled += 1
                continue

            if verification_service.has_closed_episode(db, user_id, since=record.checked_in_at):
                result.already_open += 1
                continue

            request, created = verification_service.open_request(
                db,
                user_id=user_id,
                trigger_reason=TriggerReason.MISSED_CHECKINS,
                initiated_by=SYSTEM_INITIATOR,
                now=now,
                schedule_distribution=True,
            )
            if created:
                result.requests_created += 1
                result.created_request_ids.append(request.id)
            else:
                result.already_open += 1
        except Exception:
            db.rollback()
            result.errors += 1
            logger.exception(
                "Inactivity scan failed for user %s",
                user_id,
                extra=build_log_context(user_id=str(user_id), route="scanner"),
            )

    logger.info(
        "Inactivity scan: scanned=%d reminders=%d created=%d already_open=%d errors=%d",
        result.scanned,
        result.reminders_scheduled,
        result.requests_created,
        result.already_open,
        result.errors,
    )
    return result
