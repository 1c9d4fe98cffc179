"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from willtank.db.enums import JobType
from willtank.jobs.handlers import reminders, status_checks, verification

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.DISTRIBUTE_PINS.value: verification.process_distribute_pins,
    JobType.CHECKIN_REMINDER.value: reminders.process_checkin_reminder,
    JobType.SEND_STATUS_CHECK.value: status_checks.process_send_status_check,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
