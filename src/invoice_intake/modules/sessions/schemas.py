from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from invoice_intake.modules.sessions.models import SessionStatus


class SessionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(alias="fileName", min_length=1)
    file_type: str = Field(alias="fileType")
    file_size: int = Field(alias="fileSize", ge=0)
    object_path: str | None = Field(default=None, alias="objectPath")


class SessionProcess(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_data_url: str | None = Field(default=None, alias="fileDataUrl")
    object_path: str | None = Field(default=None, alias="objectPath")
    delete_after_processing: bool = Field(default=False, alias="deleteAfterProcessing")
    expected_version: int | None = Field(default=None, alias="expectedVersion")


class ExtractRequest(SessionProcess):
    file_name: str = Field(alias="fileName", min_length=1)
    file_type: str = Field(alias="fileType")
    file_size: int = Field(alias="fileSize", ge=0)


class SessionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    file_name: str = Field(alias="fileName")
    file_type: str = Field(alias="fileType")
    file_size: int = Field(alias="fileSize")
    status: SessionStatus
    object_path: str | None = Field(default=None, alias="objectPath")
    extracted_data: dict[str, Any] | None = Field(default=None, alias="extractedData")
    ocr_text: str | None = Field(default=None, alias="ocrText")
    error_code: str | None = Field(default=None, alias="errorCode")
    error_message: str | None = Field(default=None, alias="errorMessage")
    delete_after_processing: bool = Field(default=False, alias="deleteAfterProcessing")
    version: int
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    expires_at: datetime = Field(alias="expiresAt")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
