"""Will text and supporting document uploads (owner side)."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from willtank.core.deps import get_current_user, get_db
from willtank.db.models import User
from willtank.schemas.will import WillDocumentRead, WillRead, WillUpsert
from willtank.services import will_service

router = APIRouter(prefix="/wills", tags=["wills"])


@router.get("", response_model=WillRead)
def get_will(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    will = will_service.get_will(db, user.id)
    if not will:
        raise HTTPException(status_code=404, detail="No will saved yet")
    return will


@router.put("", response_model=WillRead)
def save_will(
    data: WillUpsert,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return will_service.save_will(db, user.id, data.title, data.content, data.status)


@router.get("/documents", response_model=list[WillDocumentRead])
def list_documents(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return will_service.list_documents(db, user.id)


@router.post("/documents", response_model=WillDocumentRead, status_code=201)
async def upload_document(
    file: Annotated[UploadFile, File()],
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    content = await file.read()
    try:
        return will_service.upload_document(
            db,
            user_id=user.id,
            filename=file.filename or "untitled",
            content_type=file.content_type or "application/octet-stream",
            data=content,
        )
    except will_service.DocumentValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/documents/{document_id}", status_code=204)
def delete_document(
    document_id: UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        will_service.delete_document(db, user.id, document_id)
    except will_service.DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Document not found")
