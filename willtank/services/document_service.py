"""Executor-side document listing, downloads and the bulk archive.

Every function takes an already-validated DocumentAccessSession; routers
call document_access_service.require_active_session first.
"""

import io
import logging
import re
import zipfile
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from willtank.db.enums import AuditAction
from willtank.db.models import DocumentAccessSession, WillDocument
from willtank.db.types import utcnow
from willtank.services import audit_service, document_access_service, storage_service, will_service

logger = logging.getLogger(__name__)

WILL_DOCUMENT_KIND = "will"
FILE_DOCUMENT_KIND = "file"


class DocumentNotFoundError(Exception):
    pass


@dataclass
class DocumentItem:
    id: UUID
    kind: str
    name: str
    content_type: str
    size: int
    created_at: datetime


@dataclass
class DownloadLink:
    url: str
    expires_in: int


def _safe_name(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._ -]+", "_", name).strip(" .")
    return cleaned or "document"


def list_documents(db: Session, session: DocumentAccessSession) -> list[DocumentItem]:
    """Will text first, then uploaded files in upload order."""
    items: list[DocumentItem] = []
    will = will_service.get_will(db, session.user_id)
    if will:
        items.append(
            DocumentItem(
                id=will.id,
                kind=WILL_DOCUMENT_KIND,
                name=f"{_safe_name(will.title)}.txt",
                content_type="text/plain",
                size=len(will.content.encode("utf-8")),
                created_at=will.created_at,
            )
        )
    for doc in will_service.list_documents(db, session.user_id):
        items.append(
            DocumentItem(
                id=doc.id,
                kind=FILE_DOCUMENT_KIND,
                name=doc.filename,
                content_type=doc.content_type,
                size=doc.file_size,
                created_at=doc.created_at,
            )
        )
    return items


def _resolve(db: Session, session: DocumentAccessSession, document_id: UUID):
    will = will_service.get_will(db, session.user_id)
    if will and will.id == document_id:
        return will
    document = will_service.get_document(db, session.user_id, document_id)
    if not document:
        raise DocumentNotFoundError("Document not found")
    return document


def _log_access(db: Session, session: DocumentAccessSession, document_id: UUID, via: str) -> None:
    audit_service.log_event(
        db,
        user_id=session.user_id,
        action=AuditAction.DOCUMENT_ACCESSED,
        details={
            "verification_id": str(session.verification_request_id),
            "document_id": str(document_id),
            "via": via,
        },
    )
    db.commit()


def get_download_url(
    db: Session,
    session: DocumentAccessSession,
    document_id: UUID,
) -> DownloadLink:
    """Presigned S3 URL for files, or the token-guarded content endpoint."""
    target = _resolve(db, session, document_id)
    url = None
    if isinstance(target, WillDocument):
        url = storage_service.generate_signed_url(target.storage_key)
    if not url:
        url = f"/executor/documents/{document_id}/content?token={session.token}"
    _log_access(db, session, document_id, via="download_url")
    return DownloadLink(url=url, expires_in=storage_service.SIGNED_URL_EXPIRY_SECONDS)


def read_document(
    db: Session,
    session: DocumentAccessSession,
    document_id: UUID,
) -> tuple[str, str, bytes]:
    """Returns (filename, content_type, data)."""
    target = _resolve(db, session, document_id)
    if isinstance(target, WillDocument):
        data = storage_service.read_file(target.storage_key)
        result = (target.filename, target.content_type, data)
    else:
        result = (f"{_safe_name(target.title)}.txt", "text/plain", target.content.encode("utf-8"))
    _log_access(db, session, document_id, via="content")
    return result


def build_archive(
    db: Session,
    session: DocumentAccessSession,
    now: datetime | None = None,
) -> bytes:
    """
    ZIP of the will text and every uploaded file.

    Afterwards the session is cut to ARCHIVE_REVOKE_GRACE_SECONDS and the
    request is stamped archive_downloaded_at, which blocks re-unlocking.
    """
    now = now or utcnow()
    buffer = io.BytesIO()
    used_names: set[str] = set()
    file_count = 0

    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for item in list_documents(db, session):
            target = _resolve(db, session, item.id)
            if isinstance(target, WillDocument):
                data = storage_service.read_file(target.storage_key)
            else:
                data = target.content.encode("utf-8")

            name = _safe_name(item.name)
            if name in used_names:
                name = f"{item.id.hex[:8]}-{name}"
            used_names.add(name)
            archive.writestr(name, data)
            file_count += 1

    document_access_service.shorten_after_archive(session, now)
    request = session.verification_request
    if request.archive_downloaded_at is None:
        request.archive_downloaded_at = now
    audit_service.log_event(
        db,
        user_id=session.user_id,
        action=AuditAction.ARCHIVE_DOWNLOADED,
        details={
            "verification_id": str(session.verification_request_id),
            "file_count": file_count,
        },
    )
    db.commit()
    logger.info(
        "Archive downloaded for verification %s (%d files)",
        session.verification_request_id,
        file_count,
    )
    return buffer.getvalue()
