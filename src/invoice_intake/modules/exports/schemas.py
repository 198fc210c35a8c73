from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ExportRequest(BaseModel):
    data: dict[str, Any] | None = None
