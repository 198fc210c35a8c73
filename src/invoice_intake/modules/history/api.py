from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from invoice_intake.api.deps import Stores, get_optional_user_id, get_stores
from invoice_intake.core.config import settings
from invoice_intake.core.db import db_session
from invoice_intake.modules.history.schemas import (
    HistoryEntryOut,
    HistoryListOut,
    HistorySummaryOut,
)
from invoice_intake.modules.history.service import (
    get_history_entry,
    list_history,
    require_history_access,
)

router = APIRouter(tags=["history"])


@router.get("/history", response_model=HistoryListOut)
def list_history_entries(
    q: str | None = None,
    limit: int | None = Query(default=None),
    session: Session = Depends(db_session),
    stores: Stores = Depends(get_stores),
    user_id: str | None = Depends(get_optional_user_id),
) -> HistoryListOut:
    user_id = require_history_access(stores.entitlements, user_id)
    entries = list_history(session, user_id=user_id, query=q, limit=limit)
    return HistoryListOut(
        items=[HistorySummaryOut.model_validate(e) for e in entries],
        retention_days=settings.history_retention_days,
    )


@router.get("/history/{entry_id}", response_model=HistoryEntryOut)
def get_history(
    entry_id: str,
    session: Session = Depends(db_session),
    stores: Stores = Depends(get_stores),
    user_id: str | None = Depends(get_optional_user_id),
) -> HistoryEntryOut:
    user_id = require_history_access(stores.entitlements, user_id)
    entry = get_history_entry(session, user_id=user_id, entry_id=entry_id)
    return HistoryEntryOut.model_validate(entry)
