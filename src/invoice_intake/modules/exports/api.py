from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response

from invoice_intake.modules.exports.schemas import ExportRequest
from invoice_intake.modules.exports.service import (
    CSV_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    render_csv,
    render_xlsx,
)

router = APIRouter(tags=["exports"])


@router.post("/export/csv")
def export_csv(payload: ExportRequest) -> Response:
    return Response(
        content=render_csv(payload.data),
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="extracted-data.csv"'},
    )


@router.post("/export/excel")
def export_excel(payload: ExportRequest) -> Response:
    return Response(
        content=render_xlsx(payload.data),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="extracted-data.xlsx"'},
    )
