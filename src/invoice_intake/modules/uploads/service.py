from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from invoice_intake.core.config import settings
from invoice_intake.core.errors import AppError, ErrorCode
from invoice_intake.core.logging import get_logger, log_event, log_exception
from invoice_intake.core.models import as_utc, expires_in, utcnow
from invoice_intake.core.storage import StorageError, get_storage, normalize_object_path
from invoice_intake.modules.uploads.models import UploadRecord
from invoice_intake.modules.uploads.validation import sanitize_file_name, validate_upload_metadata

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoadedUpload:
    object_path: str
    content_type: str
    body: bytes


def _build_object_path(file_name: str) -> str:
    return f"uploads/{uuid.uuid4()}-{sanitize_file_name(file_name)}"


def _normalize(object_path: str) -> str:
    try:
        return normalize_object_path(object_path)
    except StorageError as e:
        raise AppError(ErrorCode.UPLOAD_INVALID, "Invalid object path.") from e


def create_upload(
    session: Session,
    *,
    file_name: str,
    content_type: str | None,
    body: bytes,
) -> UploadRecord:
    content_type = (content_type or "").lower()
    if not body:
        raise AppError(ErrorCode.UPLOAD_INVALID, "No file data provided.")
    validate_upload_metadata(file_type=content_type, file_size=len(body))

    stored = get_storage().put(key=_build_object_path(file_name), body=body)
    record = UploadRecord(
        object_path=stored.key,
        file_name=sanitize_file_name(file_name),
        content_type=content_type,
        byte_size=stored.byte_size,
        expires_at=expires_in(settings.upload_ttl_seconds),
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    log_event(
        logger,
        "upload.stored",
        object_path=record.object_path,
        content_type=record.content_type,
        byte_size=record.byte_size,
    )
    return record


def get_upload(session: Session, *, object_path: str) -> UploadRecord | None:
    return session.scalar(
        select(UploadRecord).where(UploadRecord.object_path == _normalize(object_path))
    )


def load_upload(session: Session, *, object_path: str) -> LoadedUpload:
    """Fetch the bytes behind an object path together with the type they were stored as."""
    record = get_upload(session, object_path=object_path)
    if not record or as_utc(record.expires_at) <= utcnow():
        raise AppError(ErrorCode.UPLOAD_INVALID, "Unable to access uploaded file.")
    try:
        body = get_storage().get(key=record.object_path)
    except StorageError as e:
        raise AppError(ErrorCode.UPLOAD_INVALID, "Unable to access uploaded file.") from e
    return LoadedUpload(
        object_path=record.object_path, content_type=record.content_type, body=body
    )


def delete_upload(session: Session, *, object_path: str) -> None:
    """Remove the blob and its record. Safe to call for paths that are already gone."""
    key = _normalize(object_path)
    removed = False
    try:
        removed = get_storage().delete(key=key)
    except (StorageError, OSError):
        log_exception(logger, "upload.delete.storage_failed", object_path=key)
    finally:
        session.execute(delete(UploadRecord).where(UploadRecord.object_path == key))
        session.commit()
    log_event(logger, "upload.deleted", object_path=key, object_removed=removed)


def sweep_expired_uploads(
    session: Session, *, now: datetime | None = None, limit: int | None = None
) -> int:
    now = now or utcnow()
    paths = list(
        session.scalars(
            select(UploadRecord.object_path)
            .where(UploadRecord.expires_at <= now)
            .order_by(UploadRecord.expires_at)
            .limit(limit or settings.sweep_batch_limit)
        )
    )
    deleted = 0
    for path in paths:
        try:
            delete_upload(session, object_path=path)
            deleted += 1
        except Exception:
            session.rollback()
            log_exception(logger, "sweep.upload.failed", object_path=path)
    return deleted
