from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from invoice_intake.core.models import Base, Expiring, Timestamped, UUIDPrimaryKey


class UploadRecord(UUIDPrimaryKey, Timestamped, Expiring, Base):
    __tablename__ = "uploads_upload_record"

    object_path: Mapped[str] = mapped_column(String(1024), unique=True)
    file_name: Mapped[str] = mapped_column(String(128))
    content_type: Mapped[str] = mapped_column(String(200))
    byte_size: Mapped[int] = mapped_column(Integer)
