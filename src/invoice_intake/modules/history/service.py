from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from invoice_intake.core.config import settings
from invoice_intake.core.errors import AppError, ErrorCode
from invoice_intake.core.logging import get_logger, log_event
from invoice_intake.core.models import as_utc, utcnow
from invoice_intake.modules.history.models import HistoryEntry
from invoice_intake.modules.sessions.store import SessionRecord
from invoice_intake.modules.usage.store import EntitlementStore

logger = get_logger(__name__)

LIST_DEFAULT = 50
LIST_MAX = 200

_VENDOR_KEYWORDS = ("vendor", "seller", "merchant", "supplier", "store", "issued by", "from")
_INVOICE_KEYWORDS = (
    "invoice number",
    "invoice #",
    "invoice no",
    "receipt number",
    "statement number",
    "reference",
    "ref",
)
_DATE_KEYWORDS = (
    "invoice date",
    "receipt date",
    "statement date",
    "issue date",
    "transaction date",
)
_TOTAL_KEYWORDS = ("total amount", "amount due", "balance due", "grand total", "total")
_TOTAL_EXCLUDE = ("subtotal", "sub total", "tax", "vat")
_CURRENCY_KEYWORDS = ("currency", "currency code", "curr")
_SYMBOL_CURRENCIES = (("$", "USD"), ("€", "EUR"), ("£", "GBP"), ("¥", "JPY"))


def require_history_access(entitlements: EntitlementStore, user_id: str | None) -> str:
    if not user_id:
        raise AppError(ErrorCode.AUTH_REQUIRED, "Authentication required.")
    if not entitlements.get(user_id).is_pro:
        raise AppError(ErrorCode.PLAN_REQUIRED, "Upgrade to Pro to access history.")
    return user_id


def normalize_limit(limit: int | None) -> int:
    if not limit:
        return LIST_DEFAULT
    return min(LIST_MAX, max(1, int(limit)))


def _normalize_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _normalize_amount(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = re.search(r"-?\d+(\.\d+)?", value.replace(",", ""))
        return float(m.group(0)) if m else None
    return None


def _normalize_currency(value: Any) -> str | None:
    text = _normalize_text(value)
    if not text:
        return None
    m = re.search(r"\b[A-Z]{3}\b", text.upper())
    if m:
        return m.group(0)
    for symbol, code in _SYMBOL_CURRENCIES:
        if symbol in text:
            return code
    return None


def _find_field(
    fields: list[dict[str, Any]], keywords: tuple[str, ...], *, exclude: tuple[str, ...] = ()
) -> dict[str, Any] | None:
    labelled = [(f, str(f.get("label") or "").lower()) for f in fields]
    for keyword in keywords:
        for f, label in labelled:
            if keyword in label and not any(x in label for x in exclude):
                return f
    return None


def derive_metadata(extracted_data: dict[str, Any]) -> dict[str, Any]:
    fields = [f for f in extracted_data.get("fields") or [] if isinstance(f, dict)]

    vendor = _find_field(fields, _VENDOR_KEYWORDS)
    invoice = _find_field(fields, _INVOICE_KEYWORDS)
    date = (
        _find_field(fields, _DATE_KEYWORDS)
        or _find_field(fields, ("date",), exclude=("due",))
        or _find_field(fields, ("due date",))
    )
    total = _find_field(fields, _TOTAL_KEYWORDS, exclude=_TOTAL_EXCLUDE) or _find_field(
        fields, ("amount",), exclude=_TOTAL_EXCLUDE
    )
    currency = _find_field(fields, _CURRENCY_KEYWORDS)

    def value(f: dict[str, Any] | None) -> Any:
        return f.get("value") if f else None

    return {
        "vendor_name": _normalize_text(value(vendor)),
        "invoice_number": _normalize_text(value(invoice)),
        "document_date": _normalize_text(value(date)),
        "total_amount": _normalize_amount(value(total)),
        "currency": _normalize_currency(value(currency)) or _normalize_currency(value(total)),
    }


def save_history_entry(
    session: Session,
    *,
    user_id: str,
    record: SessionRecord,
    extracted_data: dict[str, Any],
    now: datetime | None = None,
) -> HistoryEntry:
    now = now or utcnow()
    entry = HistoryEntry(
        user_id=user_id,
        session_id=record.id,
        file_name=record.file_name,
        file_type=record.file_type,
        file_size=record.file_size,
        extracted_data=extracted_data,
        fields_count=len(extracted_data.get("fields") or []),
        line_items_count=len(extracted_data.get("lineItems") or []),
        created_at=now,
        expires_at=now + timedelta(days=settings.history_retention_days),
        **derive_metadata(extracted_data),
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    log_event(logger, "history.saved", history_id=str(entry.id), session_id=record.id)
    return entry


def _amount_text(amount: float) -> str:
    return str(int(amount)) if amount.is_integer() else str(amount)


def _matches(entry: HistoryEntry, query: str) -> bool:
    if not query:
        return True
    haystacks = [
        entry.vendor_name,
        entry.document_date,
        entry.invoice_number,
        entry.currency,
        entry.file_name,
        entry.file_type,
    ]
    if any(query in h.lower() for h in haystacks if h):
        return True
    if entry.total_amount is not None:
        return query in _amount_text(entry.total_amount)
    return False


def _prune_expired(session: Session, *, user_id: str, now: datetime) -> None:
    result = session.execute(
        delete(HistoryEntry)
        .where(HistoryEntry.user_id == user_id, HistoryEntry.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount:
        log_event(logger, "history.pruned", count=result.rowcount)


def list_history(
    session: Session,
    *,
    user_id: str,
    query: str | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> list[HistoryEntry]:
    now = now or utcnow()
    _prune_expired(session, user_id=user_id, now=now)
    entries = session.scalars(
        select(HistoryEntry)
        .where(HistoryEntry.user_id == user_id)
        .order_by(HistoryEntry.created_at.desc())
    )
    q = (query or "").strip().lower()
    return [e for e in entries if _matches(e, q)][: normalize_limit(limit)]


def get_history_entry(
    session: Session, *, user_id: str, entry_id: str, now: datetime | None = None
) -> HistoryEntry:
    now = now or utcnow()
    try:
        uid = uuid.UUID(entry_id)
    except ValueError:
        uid = None
    entry = session.get(HistoryEntry, uid) if uid else None
    if not entry or entry.user_id != user_id:
        raise AppError(ErrorCode.HISTORY_NOT_FOUND, "History item not found.")
    if as_utc(entry.expires_at) <= now:
        session.delete(entry)
        session.commit()
        raise AppError(ErrorCode.HISTORY_NOT_FOUND, "History item not found.")
    return entry
