from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from invoice_intake.api.deps import (
    Stores,
    get_client_ip,
    get_inference_client,
    get_optional_user_id,
    get_stores,
)
from invoice_intake.core.db import db_session
from invoice_intake.modules.extraction.ai import InferenceClient
from invoice_intake.modules.sessions.schemas import (
    ExtractRequest,
    SessionCreate,
    SessionOut,
    SessionProcess,
)
from invoice_intake.modules.sessions.service import (
    create_session,
    delete_session,
    extract_document,
    get_session,
    process_session,
)

router = APIRouter(tags=["sessions"])


@router.post("/sessions", response_model=SessionOut, status_code=201)
def create_session_endpoint(
    payload: SessionCreate,
    stores: Stores = Depends(get_stores),
    user_id: str | None = Depends(get_optional_user_id),
) -> SessionOut:
    record = create_session(
        stores,
        owner_id=user_id,
        file_name=payload.file_name,
        file_type=payload.file_type,
        file_size=payload.file_size,
        object_path=payload.object_path,
    )
    return SessionOut.model_validate(record)


@router.get("/sessions/{session_id}", response_model=SessionOut)
def get_session_endpoint(
    session_id: str,
    stores: Stores = Depends(get_stores),
) -> SessionOut:
    return SessionOut.model_validate(get_session(stores, session_id=session_id))


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session_endpoint(
    session_id: str,
    session: Session = Depends(db_session),
    stores: Stores = Depends(get_stores),
) -> Response:
    delete_session(session, stores, session_id=session_id)
    return Response(status_code=204)


@router.post("/sessions/{session_id}/process", response_model=SessionOut)
async def process_session_endpoint(
    session_id: str,
    payload: SessionProcess,
    session: Session = Depends(db_session),
    stores: Stores = Depends(get_stores),
    client: InferenceClient = Depends(get_inference_client),
    user_id: str | None = Depends(get_optional_user_id),
    client_ip: str | None = Depends(get_client_ip),
) -> JSONResponse:
    result = await process_session(
        session,
        stores,
        client,
        session_id=session_id,
        user_id=user_id,
        client_ip=client_ip,
        file_data_url=payload.file_data_url,
        object_path=payload.object_path,
        delete_after_processing=payload.delete_after_processing,
        expected_version=payload.expected_version,
    )
    body = SessionOut.model_validate(result.session).to_json()
    return JSONResponse(status_code=result.status_code, content=body)


@router.post("/extract")
async def extract_endpoint(
    payload: ExtractRequest,
    session: Session = Depends(db_session),
    stores: Stores = Depends(get_stores),
    client: InferenceClient = Depends(get_inference_client),
    user_id: str | None = Depends(get_optional_user_id),
    client_ip: str | None = Depends(get_client_ip),
) -> dict[str, Any]:
    return await extract_document(
        session,
        stores,
        client,
        file_name=payload.file_name,
        file_type=payload.file_type,
        file_size=payload.file_size,
        user_id=user_id,
        client_ip=client_ip,
        file_data_url=payload.file_data_url,
        object_path=payload.object_path,
        delete_after_processing=payload.delete_after_processing,
    )
