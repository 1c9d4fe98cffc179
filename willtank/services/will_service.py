"""Will text and supporting documents (owner side)."""

import io
import logging
import uuid
from uuid import UUID

from sqlalchemy.orm import Session

from willtank.db.enums import WillStatus
from willtank.db.models import Will, WillDocument
from willtank.services import storage_service

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"pdf", "png", "jpg", "jpeg", "doc", "docx", "txt", "mp4", "mov"}
ALLOWED_MIME_TYPES = {
    "application/pdf",
    "image/png",
    "image/jpeg",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "video/mp4",
    "video/quicktime",
}
MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024  # 50 MB


class WillServiceError(Exception):
    pass


class DocumentValidationError(WillServiceError):
    pass


class DocumentNotFoundError(WillServiceError):
    pass


def validate_file(filename: str, content_type: str, file_size: int) -> tuple[bool, str | None]:
    """
    Validate file against allowlists and size limits.

    Returns (is_valid, error_message)
    """
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext not in ALLOWED_EXTENSIONS:
        return False, f"File extension '.{ext}' not allowed"

    if content_type not in ALLOWED_MIME_TYPES:
        return False, f"Content type '{content_type}' not allowed"

    if file_size <= 0:
        return False, "File is empty"

    if file_size > MAX_FILE_SIZE_BYTES:
        max_mb = MAX_FILE_SIZE_BYTES / (1024 * 1024)
        return False, f"File size exceeds {max_mb:.0f} MB limit"

    return True, None


def get_will(db: Session, user_id: UUID) -> Will | None:
    return db.query(Will).filter(Will.user_id == user_id).first()


def save_will(
    db: Session,
    user_id: UUID,
    title: str,
    content: str,
    status: WillStatus = WillStatus.DRAFT,
) -> Will:
    """Create or replace the user's will text."""
    will = get_will(db, user_id)
    if will is None:
        will = Will(user_id=user_id, title=title, content=content, status=status.value)
        db.add(will)
    else:
        will.title = title
        will.content = content
        will.status = status.value
    db.commit()
    db.refresh(will)
    return will


def upload_document(
    db: Session,
    user_id: UUID,
    filename: str,
    content_type: str,
    data: bytes,
) -> WillDocument:
    ok, error = validate_file(filename, content_type, len(data))
    if not ok:
        raise DocumentValidationError(error)

    file = io.BytesIO(data)
    doc_id = uuid.uuid4()
    ext = filename.rsplit(".", 1)[-1].lower()
    storage_key = f"{user_id}/{doc_id}.{ext}"
    checksum = storage_service.calculate_checksum(file)
    storage_service.store_file(storage_key, file)

    document = WillDocument(
        id=doc_id,
        user_id=user_id,
        filename=filename,
        content_type=content_type,
        file_size=len(data),
        storage_key=storage_key,
        checksum_sha256=checksum,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info("Stored will document %s for user %s", doc_id, user_id)
    return document


def list_documents(db: Session, user_id: UUID) -> list[WillDocument]:
    return (
        db.query(WillDocument)
        .filter(WillDocument.user_id == user_id)
        .order_by(WillDocument.created_at)
        .all()
    )


def get_document(db: Session, user_id: UUID, document_id: UUID) -> WillDocument | None:
    return (
        db.query(WillDocument)
        .filter(WillDocument.id == document_id, WillDocument.user_id == user_id)
        .first()
    )


def delete_document(db: Session, user_id: UUID, document_id: UUID) -> None:
    document = get_document(db, user_id, document_id)
    if not document:
        raise DocumentNotFoundError("Document not found")
    storage_service.delete_file(document.storage_key)
    db.delete(document)
    db.commit()
