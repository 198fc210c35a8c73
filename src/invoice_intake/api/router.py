from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from invoice_intake.core.storage import diagnose_storage
from invoice_intake.modules.exports.api import router as exports_router
from invoice_intake.modules.history.api import router as history_router
from invoice_intake.modules.sessions.api import router as sessions_router
from invoice_intake.modules.uploads.api import router as uploads_router
from invoice_intake.modules.usage.api import router as usage_router

router = APIRouter()

router.include_router(uploads_router, prefix="/api")
router.include_router(sessions_router, prefix="/api")
router.include_router(usage_router, prefix="/api")
router.include_router(history_router, prefix="/api")
router.include_router(exports_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/storage")
def healthz_storage(*, write_test: bool = False) -> JSONResponse:
    result = diagnose_storage(write_test=write_test)
    status_code = 200 if result.get("ok") else 503
    return JSONResponse(status_code=status_code, content=result)
