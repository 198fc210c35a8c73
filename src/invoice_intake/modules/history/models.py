from __future__ import annotations

from sqlalchemy import JSON, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from invoice_intake.core.models import Base, Expiring, Timestamped, UUIDPrimaryKey


class HistoryEntry(UUIDPrimaryKey, Timestamped, Expiring, Base):
    __tablename__ = "history_entry"

    user_id: Mapped[str] = mapped_column(String(128), index=True)
    session_id: Mapped[str] = mapped_column(String(64))

    file_name: Mapped[str] = mapped_column(String(128))
    file_type: Mapped[str] = mapped_column(String(100))
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    vendor_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    document_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    total_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)

    extracted_data: Mapped[dict] = mapped_column(JSON)
    fields_count: Mapped[int] = mapped_column(Integer, default=0)
    line_items_count: Mapped[int] = mapped_column(Integer, default=0)
