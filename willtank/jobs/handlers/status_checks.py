"""Contact status check job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

from willtank.services import status_check_service
from willtank.services.verification_service import NoContactsError

logger = logging.getLogger(__name__)


async def process_send_status_check(db, job) -> None:
    """Email every contact a single-use "is this user alive?" link."""
    payload = job.payload or {}
    user_id = payload.get("user_id")
    if not user_id:
        raise ValueError("Missing user_id in status check payload")

    try:
        result = await status_check_service.send_status_checks(db, UUID(user_id))
    except NoContactsError:
        logger.warning("Status check skipped for user %s: no contacts with email", user_id)
        return

    logger.info(
        "Status checks for user %s: sent=%d failed=%d",
        user_id,
        result.successful,
        result.failed,
    )
