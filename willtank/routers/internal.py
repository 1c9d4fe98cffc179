"""
Internal endpoints for scheduled/cron operations and service-to-service calls.

Protected by X-Internal-Secret header.
Call from external cron (the scanner is never self-scheduled).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from willtank.core.deps import get_db, verify_internal_secret
from willtank.schemas.internal import (
    ExpireRequestsResponse,
    ProcessJobsResponse,
    ScanResponse,
    SendExecutorPinRequest,
    SendExecutorPinResponse,
    TriggerVerificationRequest,
    TriggerVerificationResponse,
)
from willtank.schemas.status_check import SendStatusCheckRequest, SendStatusCheckResponse
from willtank.services import (
    pin_service,
    scanner_service,
    status_check_service,
    user_service,
    verification_service,
)
from willtank.services.verification_service import (
    InvalidTransitionError,
    NoContactsError,
    RequestExpiredError,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


# =============================================================================
# Scheduled
# =============================================================================

@router.post("/scheduled/inactivity-scan", response_model=ScanResponse)
def inactivity_scan(db: Session = Depends(get_db)):
    """Open verification requests for users past check-in + grace."""
    result = scanner_service.run_scan(db)
    return ScanResponse(
        scanned=result.scanned,
        reminders_scheduled=result.reminders_scheduled,
        requests_created=result.requests_created,
        already_open=result.already_open,
        errors=result.errors,
    )


@router.post("/scheduled/process-jobs", response_model=ProcessJobsResponse)
async def process_jobs(db: Session = Depends(get_db)):
    """Drain one batch of due jobs (cron-only deployments)."""
    from willtank.worker import run_due_jobs

    result = await run_due_jobs(db)
    return ProcessJobsResponse(
        processed=result.processed,
        succeeded=result.succeeded,
        failed=result.failed,
    )


@router.post("/scheduled/expire-requests", response_model=ExpireRequestsResponse)
def expire_requests(db: Session = Depends(get_db)):
    return ExpireRequestsResponse(expired=verification_service.expire_stale_requests(db))


# =============================================================================
# Service calls
# =============================================================================

@router.post("/trigger-death-verification", response_model=TriggerVerificationResponse)
async def trigger_death_verification(
    data: TriggerVerificationRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Open or advance the user's verification request and distribute PINs."""
    if not user_service.get_user(db, data.user_id):
        raise HTTPException(status_code=404, detail="User not found")
    try:
        result = await verification_service.trigger_verification(
            db,
            user_id=data.user_id,
            initiated_by="internal",
            http_request=request,
        )
    except NoContactsError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RequestExpiredError:
        raise HTTPException(status_code=410, detail="Verification has expired")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    distribution = result.distribution
    return TriggerVerificationResponse(
        verification_id=result.request.id,
        status=result.request.status,
        created=result.created,
        pins_created=distribution.pins_created if distribution else 0,
        emails_failed=distribution.emails_failed if distribution else 0,
    )


@router.post(
    "/send-executor-pin",
    response_model=SendExecutorPinResponse,
    response_model_by_alias=True,
)
async def send_executor_pin(
    data: SendExecutorPinRequest,
    db: Session = Depends(get_db),
):
    try:
        result = await pin_service.send_pin_email(
            db,
            contact_id=data.contact_id,
            contact_name=data.contact_name,
            contact_email=data.contact_email,
            executor_email=data.executor_email,
            executor_name=data.executor_name,
            deceased_name=data.deceased_name,
            pin=data.pin,
        )
    except pin_service.PinEmailValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except pin_service.PinEmailSendError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return SendExecutorPinResponse(
        success=True,
        message="PIN email sent successfully",
        email_id=result.message_id,
    )


@router.post("/send-status-check", response_model=SendStatusCheckResponse)
async def send_status_check(
    data: SendStatusCheckRequest,
    db: Session = Depends(get_db),
):
    """Email every contact of the user a single-use status check link."""
    if not user_service.get_user(db, data.user_id):
        raise HTTPException(status_code=404, detail="User not found")
    try:
        result = await status_check_service.send_status_checks(db, data.user_id)
    except NoContactsError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return SendStatusCheckResponse(
        success=True,
        total=result.total,
        successful=result.successful,
        failed=result.failed,
    )
