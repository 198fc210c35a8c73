from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from invoice_intake.core.config import settings
from invoice_intake.core.errors import AppError, ErrorCode, to_app_error
from invoice_intake.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_session_context,
    set_session_context,
)
from invoice_intake.core.models import utcnow
from invoice_intake.core.storage import StorageError, normalize_object_path
from invoice_intake.modules.extraction.ai import InferenceClient
from invoice_intake.modules.extraction.retry import CallPolicy
from invoice_intake.modules.extraction.service import (
    COMPLETED,
    ERROR,
    NEEDS_REVIEW,
    ExtractionOutcome,
    run_extraction,
)
from invoice_intake.modules.history.service import save_history_entry
from invoice_intake.modules.sessions.models import SessionStatus
from invoice_intake.modules.sessions.store import SessionRecord
from invoice_intake.modules.uploads.service import delete_upload, load_upload
from invoice_intake.modules.uploads.validation import (
    ValidatedUpload,
    parse_data_url,
    sanitize_file_name,
    validate_upload,
    validate_upload_metadata,
)
from invoice_intake.modules.usage.service import UsageDecision, reserve_usage, resolve_scope
from invoice_intake.state import Stores

logger = get_logger(__name__)

_STATUS_BY_OUTCOME = {
    COMPLETED: SessionStatus.COMPLETED,
    NEEDS_REVIEW: SessionStatus.NEEDS_REVIEW,
    ERROR: SessionStatus.ERROR,
}


@dataclass(frozen=True)
class ProcessResult:
    session: SessionRecord
    status_code: int = 200


def _normalize_path(object_path: str | None) -> str | None:
    if not object_path:
        return None
    try:
        return normalize_object_path(object_path)
    except StorageError as e:
        raise AppError(ErrorCode.UPLOAD_INVALID, "Invalid object path.") from e


def create_session(
    stores: Stores,
    *,
    file_name: str,
    file_type: str,
    file_size: int,
    owner_id: str | None = None,
    object_path: str | None = None,
) -> SessionRecord:
    validate_upload_metadata(file_type=file_type, file_size=file_size)
    record = stores.sessions.create(
        owner_id=owner_id,
        file_name=sanitize_file_name(file_name),
        file_type=file_type,
        file_size=file_size,
        object_path=_normalize_path(object_path),
        ttl_seconds=settings.session_ttl_seconds,
    )
    log_event(
        logger,
        "session.created",
        session_id=record.id,
        file_type=file_type,
        file_size=file_size,
    )
    return record


def get_session(stores: Stores, *, session_id: str) -> SessionRecord:
    record = stores.sessions.get(session_id)
    if not record:
        raise AppError(ErrorCode.SESSION_NOT_FOUND, "Session not found.")
    return record


def delete_session(session: Session, stores: Stores, *, session_id: str) -> None:
    record = stores.sessions.delete(session_id)
    if not record:
        raise AppError(ErrorCode.SESSION_NOT_FOUND, "Session not found.")
    if record.object_path:
        delete_upload(session, object_path=record.object_path)
    log_event(logger, "session.deleted", session_id=record.id)


def sweep_expired_sessions(
    session: Session,
    stores: Stores,
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> int:
    """Delete expired sessions and the uploads they still reference. Returns sessions removed."""
    now = now or utcnow()
    expired = stores.sessions.list_expired(now=now, limit=limit or settings.sweep_batch_limit)
    removed = 0
    for record in expired:
        try:
            if record.object_path:
                delete_upload(session, object_path=record.object_path)
            stores.sessions.delete(record.id)
            removed += 1
        except Exception:
            session.rollback()
            log_exception(logger, "sweep.session.failed", session_id=record.id)
    if removed:
        log_event(logger, "sweep.sessions", count=removed)
    return removed


def load_validated_upload(
    session: Session,
    *,
    declared_mime: str,
    object_path: str | None = None,
    file_data_url: str | None = None,
) -> ValidatedUpload:
    """Resolve the document bytes from blob storage or an inline data URL and validate them."""
    if object_path:
        loaded = load_upload(session, object_path=object_path)
        return validate_upload(
            loaded.body, declared_mime=declared_mime, received_mime=loaded.content_type
        )
    if file_data_url:
        parsed = parse_data_url(file_data_url)
        return validate_upload(parsed.body, declared_mime=declared_mime, received_mime=parsed.mime)
    raise AppError(ErrorCode.UPLOAD_INVALID, "No file data provided.")


def release_upload(session: Session, *, object_path: str | None, requested: bool) -> None:
    if not requested or not object_path:
        return
    try:
        delete_upload(session, object_path=object_path)
    except Exception:
        session.rollback()
        log_exception(logger, "upload.release.failed", object_path=object_path)


def _reserve(
    stores: Stores, *, user_id: str | None, client_ip: str | None
) -> UsageDecision:
    scope = resolve_scope(user_id=user_id, client_ip=client_ip)
    return reserve_usage(counters=stores.counters, entitlements=stores.entitlements, scope=scope)


def _save_history(
    session: Session, *, user_id: str, record: SessionRecord, extracted_data: dict[str, Any]
) -> None:
    # History is a convenience copy; losing it must not fail the extraction.
    try:
        save_history_entry(session, user_id=user_id, record=record, extracted_data=extracted_data)
    except Exception:
        session.rollback()
        log_exception(logger, "history.save_failed", session_id=record.id)


async def process_session(
    session: Session,
    stores: Stores,
    client: InferenceClient,
    *,
    session_id: str,
    user_id: str | None,
    client_ip: str | None,
    file_data_url: str | None = None,
    object_path: str | None = None,
    delete_after_processing: bool = False,
    expected_version: int | None = None,
    policy: CallPolicy | None = None,
) -> ProcessResult:
    """
    Run one processing attempt for a session and persist its outcome.

    Re-running a finished session overwrites the previous outcome. With
    ``expected_version`` the attempt is refused (SESSION_CONFLICT) when the
    session changed since the caller read it. Once processing has started,
    every failure is stored on the session. The upload is released on every
    exit, refusals included, if ``delete_after_processing`` was requested.
    """
    path = _normalize_path(object_path)
    try:
        current = get_session(stores, session_id=session_id)
        path = path or current.object_path
        record = stores.sessions.begin_processing(
            current.id,
            expected_version=expected_version,
            object_path=path,
            delete_after_processing=delete_after_processing,
        )
    except AppError:
        release_upload(session, object_path=path, requested=delete_after_processing)
        raise

    token = set_session_context(record.id)
    start = time.monotonic()
    decision: UsageDecision | None = None
    try:
        try:
            upload = load_validated_upload(
                session,
                declared_mime=record.file_type,
                object_path=path,
                file_data_url=file_data_url,
            )
            decision = _reserve(stores, user_id=user_id, client_ip=client_ip)
            log_event(
                logger,
                "session.processing",
                file_type=record.file_type,
                byte_size=upload.size_bytes,
                version=record.version,
            )
            outcome = await run_extraction(
                client, upload, file_name=record.file_name, policy=policy
            )
        except AppError as e:
            outcome = ExtractionOutcome(status=ERROR, error=e)
        except Exception as e:
            log_exception(logger, "session.unexpected_error")
            outcome = ExtractionOutcome(status=ERROR, error=to_app_error(e, ErrorCode.OCR_FAIL))

        extracted = outcome.extracted_data.to_json() if outcome.extracted_data else None
        saved = stores.sessions.record_outcome(
            record.id,
            status=_STATUS_BY_OUTCOME[outcome.status],
            extracted_data=extracted,
            ocr_text=outcome.ocr_text,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
        )
        log_event(
            logger,
            f"session.{outcome.status}",
            code=outcome.error_code,
            duration_ms=monotonic_ms(start),
        )
        if saved is None:
            raise AppError(ErrorCode.SESSION_NOT_FOUND, "Session not found.")

        history_user = record.owner_id or user_id
        if outcome.status == COMPLETED and decision and decision.unlimited and history_user:
            _save_history(session, user_id=history_user, record=saved, extracted_data=extracted)

        status_code = outcome.error.status_code if outcome.status == ERROR else 200
        return ProcessResult(session=saved, status_code=status_code)
    finally:
        release_upload(session, object_path=path, requested=delete_after_processing)
        reset_session_context(token)


async def extract_document(
    session: Session,
    stores: Stores,
    client: InferenceClient,
    *,
    file_name: str,
    file_type: str,
    file_size: int,
    user_id: str | None,
    client_ip: str | None,
    file_data_url: str | None = None,
    object_path: str | None = None,
    delete_after_processing: bool = False,
    policy: CallPolicy | None = None,
) -> dict[str, Any]:
    """One-shot extraction without a stored session."""
    job_id = str(uuid.uuid4())
    path = _normalize_path(object_path)
    try:
        validate_upload_metadata(file_type=file_type, file_size=file_size)
        upload = load_validated_upload(
            session, declared_mime=file_type, object_path=path, file_data_url=file_data_url
        )
        _reserve(stores, user_id=user_id, client_ip=client_ip)
        log_event(logger, "extract.processing", job_id=job_id, file_type=file_type)
        outcome = await run_extraction(
            client, upload, file_name=sanitize_file_name(file_name), policy=policy
        )
    finally:
        release_upload(session, object_path=path, requested=delete_after_processing)

    log_event(logger, f"extract.{outcome.status}", job_id=job_id, code=outcome.error_code)
    if outcome.status == ERROR:
        raise outcome.error
    body: dict[str, Any] = {"jobId": job_id, "status": outcome.status, "createdAt": utcnow()}
    if outcome.status == COMPLETED:
        body["extractedData"] = outcome.extracted_data.to_json()
    else:
        body.update(
            ocrText=outcome.ocr_text,
            errorCode=outcome.error_code,
            errorMessage=outcome.error_message,
        )
    return body
