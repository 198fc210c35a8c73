from __future__ import annotations

import dataclasses
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from invoice_intake.core.errors import AppError, ErrorCode
from invoice_intake.core.models import as_utc, expires_in, utcnow
from invoice_intake.modules.sessions.models import ProcessingSession, SessionStatus


@dataclass(frozen=True)
class SessionRecord:
    id: str
    file_name: str
    file_type: str
    file_size: int
    status: SessionStatus
    expires_at: datetime
    owner_id: str | None = None
    object_path: str | None = None
    extracted_data: dict[str, Any] | None = None
    ocr_text: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    delete_after_processing: bool = False
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return as_utc(self.expires_at) <= (now or utcnow())


_CLEARED_OUTCOME: dict[str, Any] = {
    "extracted_data": None,
    "ocr_text": None,
    "error_code": None,
    "error_message": None,
}


def _not_found() -> AppError:
    return AppError(ErrorCode.SESSION_NOT_FOUND, "Session not found.")


def _conflict(*, expected: int, current: int) -> AppError:
    return AppError(
        ErrorCode.SESSION_CONFLICT,
        "Session was modified by another request.",
        details={"expectedVersion": expected, "currentVersion": current},
    )


class SessionStore:
    """Persistence for processing sessions. Expired sessions read as missing."""

    def create(
        self,
        *,
        file_name: str,
        file_type: str,
        file_size: int,
        ttl_seconds: int,
        owner_id: str | None = None,
        object_path: str | None = None,
    ) -> SessionRecord:  # pragma: no cover
        raise NotImplementedError

    def get(self, session_id: str) -> SessionRecord | None:  # pragma: no cover
        raise NotImplementedError

    def begin_processing(
        self,
        session_id: str,
        *,
        expected_version: int | None,
        object_path: str | None,
        delete_after_processing: bool,
    ) -> SessionRecord:  # pragma: no cover
        """Move to ``processing`` and clear the previous outcome, bumping the version."""
        raise NotImplementedError

    def record_outcome(
        self,
        session_id: str,
        *,
        status: SessionStatus,
        extracted_data: dict[str, Any] | None = None,
        ocr_text: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> SessionRecord | None:  # pragma: no cover
        raise NotImplementedError

    def delete(self, session_id: str) -> SessionRecord | None:  # pragma: no cover
        raise NotImplementedError

    def list_expired(self, *, now: datetime, limit: int) -> list[SessionRecord]:  # pragma: no cover
        raise NotImplementedError


def _parse_id(session_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(session_id))
    except ValueError:
        return None


def _to_record(row: ProcessingSession) -> SessionRecord:
    return SessionRecord(
        id=str(row.id),
        owner_id=row.owner_id,
        file_name=row.file_name,
        file_type=row.file_type,
        file_size=row.file_size,
        object_path=row.object_path,
        status=row.status,
        extracted_data=row.extracted_data,
        ocr_text=row.ocr_text,
        error_code=row.error_code,
        error_message=row.error_message,
        delete_after_processing=bool(row.delete_after_processing),
        version=row.version or 0,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        expires_at=as_utc(row.expires_at),
    )


class SqlSessionStore(SessionStore):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create(
        self,
        *,
        file_name: str,
        file_type: str,
        file_size: int,
        ttl_seconds: int,
        owner_id: str | None = None,
        object_path: str | None = None,
    ) -> SessionRecord:
        with self._session_factory() as session:
            row = ProcessingSession(
                owner_id=owner_id,
                file_name=file_name,
                file_type=file_type,
                file_size=file_size,
                object_path=object_path,
                status=SessionStatus.UPLOADING,
                version=0,
                expires_at=expires_in(ttl_seconds),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(row)

    def get(self, session_id: str) -> SessionRecord | None:
        uid = _parse_id(session_id)
        if uid is None:
            return None
        with self._session_factory() as session:
            row = session.get(ProcessingSession, uid)
            if not row:
                return None
            record = _to_record(row)
        return None if record.is_expired() else record

    def begin_processing(
        self,
        session_id: str,
        *,
        expected_version: int | None,
        object_path: str | None,
        delete_after_processing: bool,
    ) -> SessionRecord:
        uid = _parse_id(session_id)
        if uid is None:
            raise _not_found()
        with self._session_factory() as session:
            stmt = update(ProcessingSession).where(
                ProcessingSession.id == uid, ProcessingSession.expires_at > utcnow()
            )
            if expected_version is not None:
                stmt = stmt.where(ProcessingSession.version == expected_version)
            result = session.execute(
                stmt.values(
                    status=SessionStatus.PROCESSING,
                    object_path=object_path,
                    delete_after_processing=delete_after_processing,
                    version=ProcessingSession.version + 1,
                    updated_at=utcnow(),
                    **_CLEARED_OUTCOME,
                ).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                current = session.scalar(
                    select(ProcessingSession.version).where(
                        ProcessingSession.id == uid, ProcessingSession.expires_at > utcnow()
                    )
                )
                if current is None or expected_version is None:
                    raise _not_found()
                raise _conflict(expected=expected_version, current=current)
            session.commit()
            row = session.get(ProcessingSession, uid)
            return _to_record(row)

    def record_outcome(
        self,
        session_id: str,
        *,
        status: SessionStatus,
        extracted_data: dict[str, Any] | None = None,
        ocr_text: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> SessionRecord | None:
        uid = _parse_id(session_id)
        if uid is None:
            return None
        with self._session_factory() as session:
            row = session.get(ProcessingSession, uid)
            if not row:
                # Deleted while processing; nothing to record.
                return None
            row.status = status
            row.extracted_data = extracted_data
            row.ocr_text = ocr_text
            row.error_code = error_code
            row.error_message = error_message
            row.version = (row.version or 0) + 1
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(row)

    def delete(self, session_id: str) -> SessionRecord | None:
        uid = _parse_id(session_id)
        if uid is None:
            return None
        with self._session_factory() as session:
            row = session.get(ProcessingSession, uid)
            if not row:
                return None
            record = _to_record(row)
            session.delete(row)
            session.commit()
            return record

    def list_expired(self, *, now: datetime, limit: int) -> list[SessionRecord]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(ProcessingSession)
                .where(ProcessingSession.expires_at <= now)
                .order_by(ProcessingSession.expires_at)
                .limit(limit)
            )
            return [_to_record(r) for r in rows]


class MemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._rows: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(
        self,
        *,
        file_name: str,
        file_type: str,
        file_size: int,
        ttl_seconds: int,
        owner_id: str | None = None,
        object_path: str | None = None,
    ) -> SessionRecord:
        record = SessionRecord(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            object_path=object_path,
            status=SessionStatus.UPLOADING,
            expires_at=expires_in(ttl_seconds),
        )
        with self._lock:
            self._rows[record.id] = record
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            record = self._rows.get(str(session_id))
        if record is None or record.is_expired():
            return None
        return record

    def begin_processing(
        self,
        session_id: str,
        *,
        expected_version: int | None,
        object_path: str | None,
        delete_after_processing: bool,
    ) -> SessionRecord:
        with self._lock:
            record = self._rows.get(str(session_id))
            if record is None or record.is_expired():
                raise _not_found()
            if expected_version is not None and record.version != expected_version:
                raise _conflict(expected=expected_version, current=record.version)
            updated = dataclasses.replace(
                record,
                status=SessionStatus.PROCESSING,
                object_path=object_path,
                delete_after_processing=delete_after_processing,
                version=record.version + 1,
                updated_at=utcnow(),
                **_CLEARED_OUTCOME,
            )
            self._rows[record.id] = updated
            return updated

    def record_outcome(
        self,
        session_id: str,
        *,
        status: SessionStatus,
        extracted_data: dict[str, Any] | None = None,
        ocr_text: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> SessionRecord | None:
        with self._lock:
            record = self._rows.get(str(session_id))
            if record is None:
                return None
            updated = dataclasses.replace(
                record,
                status=status,
                extracted_data=extracted_data,
                ocr_text=ocr_text,
                error_code=error_code,
                error_message=error_message,
                version=record.version + 1,
                updated_at=utcnow(),
            )
            self._rows[record.id] = updated
            return updated

    def delete(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            return self._rows.pop(str(session_id), None)

    def list_expired(self, *, now: datetime, limit: int) -> list[SessionRecord]:
        with self._lock:
            expired = [r for r in self._rows.values() if r.is_expired(now)]
        return sorted(expired, key=lambda r: r.expires_at)[:limit]
