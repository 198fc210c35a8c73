from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from invoice_intake.core.models import Base, Timestamped, utcnow


class UsageCounter(Base):
    __tablename__ = "usage_counter"

    scope_kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    date_key: Mapped[str] = mapped_column(String(10), primary_key=True)

    count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class Entitlement(Timestamped, Base):
    __tablename__ = "usage_entitlement"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    plan: Mapped[str] = mapped_column(String(16), default="free")
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
