from __future__ import annotations

import enum

from sqlalchemy import JSON, Boolean, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from invoice_intake.core.models import Base, Expiring, Timestamped, UUIDPrimaryKey


class SessionStatus(str, enum.Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    NEEDS_REVIEW = "needs_review"
    ERROR = "error"


class ProcessingSession(UUIDPrimaryKey, Timestamped, Expiring, Base):
    __tablename__ = "sessions_processing_session"

    owner_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    file_name: Mapped[str] = mapped_column(String(128))
    file_type: Mapped[str] = mapped_column(String(100))
    file_size: Mapped[int] = mapped_column(Integer)
    object_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        index=True,
    )
    extracted_data: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    ocr_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    delete_after_processing: Mapped[bool] = mapped_column(Boolean, default=False)

    version: Mapped[int] = mapped_column(Integer, default=0)
