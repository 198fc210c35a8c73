from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from invoice_intake.core.db import db_session
from invoice_intake.core.logging import get_logger, log_event
from invoice_intake.modules.uploads.schemas import UploadOut
from invoice_intake.modules.uploads.service import create_upload

router = APIRouter(tags=["uploads"])
logger = get_logger(__name__)


@router.post("/uploads", response_model=UploadOut, response_model_by_alias=True)
async def upload_file(
    upload: UploadFile = File(...),
    session: Session = Depends(db_session),
) -> UploadOut:
    body = await upload.read()
    log_event(
        logger,
        "upload.received",
        filename=upload.filename or "document",
        content_type=upload.content_type,
        byte_size=len(body),
    )
    record = create_upload(
        session,
        file_name=upload.filename or "document",
        content_type=upload.content_type,
        body=body,
    )
    return UploadOut.model_validate(record, from_attributes=True)
