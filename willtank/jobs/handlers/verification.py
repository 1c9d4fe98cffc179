"""Verification job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

from willtank.db.enums import VerificationStatus
from willtank.services import pin_service, verification_service

logger = logging.getLogger(__name__)


async def process_distribute_pins(db, job) -> None:
    """Distribute PINs for a pending request opened by the scanner."""
    payload = job.payload or {}
    verification_id = payload.get("verification_id")
    if not verification_id:
        raise ValueError("Missing verification_id in job payload")

    request = verification_service.get_request(db, UUID(verification_id))
    if not request:
        raise ValueError(f"Verification request {verification_id} not found")

    if request.status != VerificationStatus.PENDING.value:
        # Already distributed through trigger-death-verification, or closed
        logger.info(
            "Skipping PIN distribution for %s (status=%s)", request.id, request.status
        )
        return

    result = await pin_service.distribute_pins(db, request)
    logger.info(
        "Distributed %d PINs for %s (sent=%d failed=%d)",
        result.pins_created,
        request.id,
        result.emails_sent,
        result.emails_failed,
    )
