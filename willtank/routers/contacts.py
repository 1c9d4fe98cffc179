"""Beneficiary, executor and trusted contact management.

The status-check answer route is public: the single-use token from the
e-mailed link identifies the contact.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from willtank.core.deps import get_current_user, get_db
from willtank.core.rate_limit import limiter
from willtank.db.enums import ContactType, StatusCheckResponse
from willtank.db.models import User
from willtank.schemas.contact import ContactCreate, ContactRead
from willtank.schemas.status_check import StatusCheckAnswer, StatusCheckAnswerResponse
from willtank.services import contact_service, status_check_service

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.get("", response_model=list[ContactRead])
def list_contacts(
    contact_type: ContactType | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return contact_service.list_contacts(db, user.id, contact_type=contact_type)


@router.post("", response_model=ContactRead, status_code=201)
def create_contact(
    data: ContactCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return contact_service.create_contact(
        db,
        user_id=user.id,
        contact_type=data.contact_type,
        name=data.name,
        email=data.email,
        phone=data.phone,
        relationship=data.relationship,
        is_primary=data.is_primary,
    )


@router.delete("/{contact_id}", status_code=204)
def delete_contact(
    contact_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        contact_service.delete_contact(db, user.id, contact_id)
    except contact_service.ContactNotFoundError:
        raise HTTPException(status_code=404, detail="Contact not found")


# =============================================================================
# Status check responses (public, token-guarded)
# =============================================================================

@router.post(
    "/status-check/{token}",
    response_model=StatusCheckAnswerResponse,
    response_model_by_alias=True,
)
@limiter.limit("10/minute")
def answer_status_check(
    token: str,
    data: StatusCheckAnswer,
    request: Request,
    db: Session = Depends(get_db),
):
    """Record a contact's alive/deceased answer from the e-mailed link."""
    try:
        outcome = status_check_service.record_response(
            db, token, data.status, message=data.message, http_request=request
        )
    except status_check_service.StatusCheckNotFoundError:
        raise HTTPException(status_code=404, detail="Invalid status check link")
    except status_check_service.StatusCheckAnsweredError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except status_check_service.StatusCheckExpiredError as e:
        raise HTTPException(status_code=410, detail=str(e))

    if outcome.response == StatusCheckResponse.ALIVE.value:
        return StatusCheckAnswerResponse(
            success=True,
            message="Thank you for confirming the status.",
        )
    return StatusCheckAnswerResponse(
        success=True,
        message="Thank you for this important information. The appropriate parties will be notified.",
        verification_id=outcome.verification_id,
    )
