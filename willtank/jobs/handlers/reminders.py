"""Check-in reminder job handlers."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from willtank.db.enums import CheckinStatus
from willtank.db.models import CheckinRecord, User
from willtank.db.types import utcnow
from willtank.services import email_service, email_templates

logger = logging.getLogger(__name__)


def _coerce_uuid(raw_id: str | None) -> UUID | None:
    if not raw_id:
        return None
    try:
        return UUID(str(raw_id))
    except (TypeError, ValueError):
        logger.warning("Invalid UUID value '%s' in reminder payload", raw_id)
        return None


async def process_checkin_reminder(db, job) -> None:
    """Email the user once when a check-in is overdue but still within grace."""
    payload = job.payload or {}
    checkin_id = _coerce_uuid(payload.get("checkin_id"))
    if not checkin_id:
        raise ValueError("Missing checkin_id in reminder payload")

    record = db.query(CheckinRecord).filter(CheckinRecord.id == checkin_id).first()
    if not record:
        raise ValueError(f"Check-in {checkin_id} not found")
    if record.reminder_sent_at is not None:
        return
    if record.status != CheckinStatus.OVERDUE.value:
        # User checked in (new record) or status was reset
        return

    latest = (
        db.query(CheckinRecord.id)
        .filter(CheckinRecord.user_id == record.user_id)
        .order_by(CheckinRecord.checked_in_at.desc())
        .first()
    )
    if latest and latest.id != record.id:
        logger.info("Skipping reminder for superseded check-in %s", record.id)
        return

    user = db.query(User).filter(User.id == record.user_id).first()
    if not user or not user.email:
        logger.warning("No email address for user %s; reminder skipped", record.user_id)
        return

    days_left = 0
    deadline_raw = payload.get("grace_deadline")
    if deadline_raw:
        deadline = datetime.fromisoformat(deadline_raw)
        days_left = max(0, (deadline - utcnow()).days)

    subject, html = email_templates.checkin_reminder(user.display_name, days_left)
    result = await email_service.send_email(
        to_email=user.email,
        subject=subject,
        html=html,
        tags={"type": "checkin_reminder"},
        idempotency_key=f"checkin_reminder:{record.id}",
    )
    if not result.success:
        raise RuntimeError(result.error or "Reminder email failed")

    record.reminder_sent_at = utcnow()
    db.commit()
