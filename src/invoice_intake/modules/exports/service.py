from __future__ import annotations

import csv
import io
import json
from typing import Any

from openpyxl import Workbook

from invoice_intake.core.errors import AppError, ErrorCode
from invoice_intake.core.logging import get_logger, log_event

logger = get_logger(__name__)

CSV_MEDIA_TYPE = "text/csv"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SHEET_TITLE = "Document"


def format_cell_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def line_item_columns(items: list[dict[str, Any]]) -> list[str]:
    """Union of line-item keys in first-seen order."""
    columns: list[str] = []
    for item in items:
        for key in item:
            if key not in columns:
                columns.append(key)
    return columns


def build_rows(data: dict[str, Any] | None) -> list[list[str]]:
    if not data:
        raise AppError(ErrorCode.UPLOAD_INVALID, "No data provided.")

    fields = data.get("fields")
    fields = [f for f in fields if isinstance(f, dict)] if isinstance(fields, list) else []
    rows = [["Field", "Value"]]
    rows += [[format_cell_value(f.get("label")), format_cell_value(f.get("value"))] for f in fields]

    items = data.get("lineItems")
    items = [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []
    if items:
        columns = line_item_columns(items)
        rows.append(["", ""])
        rows.append(["Line Items", ""])
        rows.append(columns)
        rows += [[format_cell_value(item.get(c)) for c in columns] for item in items]
    return rows


def render_csv(data: dict[str, Any] | None) -> bytes:
    rows = build_rows(data)
    out = io.StringIO()
    csv.writer(out, lineterminator="\n").writerows(rows)
    log_event(logger, "export.csv", rows=len(rows))
    return out.getvalue().encode("utf-8")


def render_xlsx(data: dict[str, Any] | None) -> bytes:
    rows = build_rows(data)
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    for row in rows:
        ws.append(row)
    ws.column_dimensions["A"].width = 30
    ws.column_dimensions["B"].width = 45

    out = io.BytesIO()
    wb.save(out)
    log_event(logger, "export.xlsx", rows=len(rows))
    return out.getvalue()
