from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UploadOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    object_path: str = Field(alias="objectPath")
    content_type: str = Field(alias="contentType")
    byte_size: int = Field(alias="byteSize")
    expires_at: datetime = Field(alias="expiresAt")
