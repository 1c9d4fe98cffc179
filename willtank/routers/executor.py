"""Public executor endpoints: unlock portal and time-boxed document access.

No platform session here. The verification id (or emailed unlock token)
identifies the request; an access token from a successful unlock guards
every document read.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from willtank.core.deps import get_access_token, get_db
from willtank.core.rate_limit import limiter
from willtank.db.models import DocumentAccessSession
from willtank.schemas.executor import (
    AccessStatusRead,
    DocumentListResponse,
    DocumentRead,
    DownloadUrlResponse,
    ExecutorStatusRead,
    PinSlotRead,
    PinSubmission,
    UnlockResponse,
)
from willtank.services import (
    document_access_service,
    document_service,
    storage_service,
    unlock_service,
    verification_service,
)
from willtank.services.document_access_service import AccessExpiredError, AccessTokenInvalidError
from willtank.services.verification_service import RequestExpiredError, RequestNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/executor", tags=["executor"])

RESTART_MESSAGE = "Document access has expired. Please restart verification."


# =============================================================================
# Helpers
# =============================================================================

def _status_response(db: Session, verification_id: UUID) -> ExecutorStatusRead:
    try:
        status = verification_service.get_executor_status(db, verification_id)
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="Verification not found")
    except RequestExpiredError:
        raise HTTPException(status_code=410, detail="Verification has expired")
    return ExecutorStatusRead(
        verification_id=status.verification_id,
        status=status.status,
        pins_required=status.pins_required,
        pins_received=status.pins_received,
        expires_at=status.expires_at,
        user_name=status.user_name,
        executor_name=status.executor_name,
        slots=[PinSlotRead(**slot.__dict__) for slot in status.slots],
    )


def require_access_session(
    token: str = Depends(get_access_token),
    db: Session = Depends(get_db),
) -> DocumentAccessSession:
    """Server-side expiry/revocation check on every document call."""
    try:
        return document_access_service.require_active_session(db, token)
    except AccessTokenInvalidError:
        raise HTTPException(status_code=401, detail="Invalid access token")
    except AccessExpiredError:
        raise HTTPException(status_code=410, detail=RESTART_MESSAGE)


# =============================================================================
# Unlock portal
# =============================================================================

@router.get("/verifications/{verification_id}", response_model=ExecutorStatusRead)
def check_executor_verification(
    verification_id: UUID,
    db: Session = Depends(get_db),
):
    """PIN slots and progress for the unlock page."""
    return _status_response(db, verification_id)


@router.get("/unlock/{unlock_token}", response_model=ExecutorStatusRead)
def resolve_unlock_link(
    unlock_token: str,
    db: Session = Depends(get_db),
):
    """Resolve the emailed /will-unlock/{token} link to its verification."""
    request = verification_service.get_request_by_unlock_token(db, unlock_token)
    if not request:
        raise HTTPException(status_code=404, detail="Unlock link is invalid")
    return _status_response(db, request.id)


@router.post(
    "/verifications/{verification_id}/pins",
    response_model=UnlockResponse,
    response_model_by_alias=True,
)
@limiter.limit("30/minute")
def submit_executor_pins(
    verification_id: UUID,
    data: PinSubmission,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Submit the full ordered PIN set.

    Mismatches return 200 with success=false and the invalid slot indexes;
    the executor may retry.
    """
    try:
        result = unlock_service.submit_pins(
            db, verification_id, data.pins, http_request=request
        )
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="Verification not found")
    except RequestExpiredError:
        raise HTTPException(status_code=410, detail="Verification has expired")
    except unlock_service.ArchiveAlreadyDownloadedError as e:
        raise HTTPException(status_code=410, detail=str(e))
    except unlock_service.PinCountMismatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except unlock_service.UnlockNotAvailableError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return UnlockResponse(
        success=result.success,
        status=result.status,
        invalid_pins=result.invalid_pins,
        message=result.message,
        access_token=result.access_token,
        access_expires_at=result.access_expires_at,
    )


# =============================================================================
# Document access gate
# =============================================================================

@router.get("/access", response_model=AccessStatusRead)
def get_access_status(
    token: str = Depends(get_access_token),
    db: Session = Depends(get_db),
):
    """Polled by the documents page; redirect when active is false."""
    try:
        status = document_access_service.get_access_status(db, token)
    except AccessTokenInvalidError:
        raise HTTPException(status_code=401, detail="Invalid access token")
    return AccessStatusRead(**status.__dict__)


@router.get("/documents", response_model=DocumentListResponse)
def get_executor_documents(
    db: Session = Depends(get_db),
    session: DocumentAccessSession = Depends(require_access_session),
):
    items = document_service.list_documents(db, session)
    return DocumentListResponse(
        documents=[DocumentRead(**item.__dict__) for item in items],
        expires_at=session.expires_at,
    )


@router.get("/documents/archive")
def get_all_documents_zip(
    db: Session = Depends(get_db),
    session: DocumentAccessSession = Depends(require_access_session),
):
    """ZIP of every document. Access is cut shortly after this call."""
    try:
        data = document_service.build_archive(db, session)
    except storage_service.StorageError:
        logger.exception("Archive build failed for verification %s", session.verification_request_id)
        raise HTTPException(status_code=502, detail="Failed to read documents from storage")
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="will-documents.zip"'},
    )


@router.post("/documents/{document_id}/download-url", response_model=DownloadUrlResponse)
def get_document_download_url(
    document_id: UUID,
    db: Session = Depends(get_db),
    session: DocumentAccessSession = Depends(require_access_session),
):
    try:
        link = document_service.get_download_url(db, session, document_id)
    except document_service.DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Document not found")
    except storage_service.StorageError:
        raise HTTPException(status_code=502, detail="Failed to sign download URL")
    return DownloadUrlResponse(url=link.url, expires_in=link.expires_in)


@router.get("/documents/{document_id}/content")
def get_document_content(
    document_id: UUID,
    db: Session = Depends(get_db),
    session: DocumentAccessSession = Depends(require_access_session),
):
    try:
        filename, content_type, data = document_service.read_document(db, session, document_id)
    except document_service.DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Document not found")
    except storage_service.StorageError:
        raise HTTPException(status_code=502, detail="Failed to read document from storage")
    safe = filename.replace('"', "")
    return Response(
        content=data,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{safe}"'},
    )
