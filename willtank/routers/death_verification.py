"""Owner-side death-verification endpoints: settings, check-ins, requests, logs."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from willtank.core.deps import get_current_user, get_db
from willtank.db.models import User
from willtank.schemas.death_verification import (
    CheckinRead,
    CheckinStatusRead,
    SettingsRead,
    SettingsUpdate,
    VerificationLogListResponse,
    VerificationLogRead,
    VerificationRequestRead,
)
from willtank.schemas.status_check import StatusCheckScheduled
from willtank.services import (
    audit_service,
    checkin_service,
    settings_service,
    status_check_service,
    verification_service,
)

router = APIRouter(prefix="/death-verification", tags=["death-verification"])


# =============================================================================
# Settings
# =============================================================================

@router.get("/settings", response_model=SettingsRead)
def get_settings(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Current settings; defaults (30/7/enabled) are created on first read."""
    return settings_service.get_or_create_settings(db, user.id)


@router.put("/settings", response_model=SettingsRead)
def update_settings(
    data: SettingsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        return settings_service.update_settings(db, user.id, data, request=request)
    except settings_service.SettingsValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


# =============================================================================
# Check-ins
# =============================================================================

@router.post("/check-in", response_model=CheckinRead, status_code=201)
def check_in(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Confirm the user is alive and push out the next due date."""
    return checkin_service.record_checkin(db, user.id, request=request)


@router.get("/check-in", response_model=CheckinStatusRead)
def get_check_in_status(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    info = checkin_service.get_checkin_status(db, user.id)
    return CheckinStatusRead(**info.__dict__)


@router.get("/check-ins", response_model=list[CheckinRead])
def list_check_ins(
    limit: int = 20,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return checkin_service.list_checkins(db, user.id, limit=min(max(limit, 1), 100))


# =============================================================================
# Requests & Audit log
# =============================================================================

@router.get("/requests", response_model=list[VerificationRequestRead])
def list_requests(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return verification_service.list_requests_for_user(db, user.id)


@router.get("/logs", response_model=VerificationLogListResponse)
def list_logs(
    limit: int = 100,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    entries = audit_service.list_events(db, user.id, limit=min(max(limit, 1), 500))
    return VerificationLogListResponse(
        items=[VerificationLogRead.model_validate(e) for e in entries],
        chain_valid=audit_service.verify_chain(db, user.id),
    )


# =============================================================================
# Status checks
# =============================================================================

@router.post("/status-check", response_model=StatusCheckScheduled, status_code=202)
def request_status_check(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Queue "is this user alive?" e-mails to every contact."""
    job = status_check_service.schedule_status_checks(db, user.id)
    return StatusCheckScheduled(job_id=job.id, message="Status check emails queued")
