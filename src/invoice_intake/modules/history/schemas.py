from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HistorySummaryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    session_id: str = Field(alias="sessionId")
    file_name: str = Field(alias="fileName")
    file_type: str = Field(alias="fileType")
    file_size: int | None = Field(default=None, alias="fileSize")
    vendor_name: str | None = Field(default=None, alias="vendorName")
    document_date: str | None = Field(default=None, alias="documentDate")
    invoice_number: str | None = Field(default=None, alias="invoiceNumber")
    total_amount: float | None = Field(default=None, alias="totalAmount")
    currency: str | None = None
    fields_count: int = Field(alias="fieldsCount")
    line_items_count: int = Field(alias="lineItemsCount")
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")


class HistoryEntryOut(HistorySummaryOut):
    extracted_data: dict[str, Any] = Field(alias="extractedData")


class HistoryListOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[HistorySummaryOut]
    retention_days: int = Field(alias="retentionDays")
