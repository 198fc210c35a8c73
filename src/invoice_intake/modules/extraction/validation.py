"""
Confidence scoring and label-driven checks for a structured extraction.

Runs after the model answer passed schema validation. It only annotates
fields (confidence, issues) and never rejects the extraction.
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any

from invoice_intake.modules.extraction.schemas import ExtractedData, ExtractedField, is_blank

DEFAULT_CONFIDENCE = 0.82
LOW_CONFIDENCE_THRESHOLD = 0.6
BLANK_VALUE_CONFIDENCE = 0.4

DATE_TOKENS = ("date", "issued", "due")
CURRENCY_TOKENS = ("currency", "curr")
TOTAL_TOKENS = ("total", "amount due", "balance due", "grand total")
VAT_TOKENS = ("vat", "tax")

_NUMBER_PREFIX = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$", re.IGNORECASE)
_CURRENCY_SYMBOLS = re.compile(r"[€$£¥]")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d-%b-%Y",
    "%d.%m.%Y",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%d-%m-%Y",
)


def clamp_confidence(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return min(1.0, max(0.0, float(value)))


def parse_number_value(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.\-]", "", value)
        m = _NUMBER_PREFIX.match(cleaned)
        if not m:
            return None
        return float(m.group(0))
    return None


def is_valid_date_value(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    raw = value.strip()
    if not raw:
        return False
    try:
        datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            datetime.strptime(raw, fmt)
            return True
        except ValueError:
            continue
    return False


def is_valid_currency_value(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    raw = value.strip()
    if not raw:
        return False
    return bool(_CURRENCY_CODE.match(raw) or _CURRENCY_SYMBOLS.search(raw))


def label_matches(label: str, tokens: tuple[str, ...]) -> bool:
    normalized = (label or "").lower()
    return any(token in normalized for token in tokens)


def _score_field(field: ExtractedField) -> ExtractedField:
    issues: list[str] = []
    label = field.label or ""

    if label_matches(label, DATE_TOKENS) and not is_valid_date_value(field.value):
        issues.append("Invalid date format.")
    if (label_matches(label, TOTAL_TOKENS) or label_matches(label, VAT_TOKENS)) and (
        parse_number_value(field.value) is None
    ):
        issues.append("Invalid amount format.")
    if label_matches(label, CURRENCY_TOKENS) and not is_valid_currency_value(field.value):
        issues.append("Invalid currency format.")

    confidence = clamp_confidence(field.confidence)
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE
    if is_blank(field.value):
        confidence = min(confidence, BLANK_VALUE_CONFIDENCE)
    if issues:
        confidence = min(confidence, LOW_CONFIDENCE_THRESHOLD - 0.05)

    return field.model_copy(update={"confidence": confidence, "issues": issues or None})


def apply_validation_rules(data: ExtractedData) -> ExtractedData:
    fields = [_score_field(f) for f in data.fields]

    total_field = next((f for f in fields if label_matches(f.label, TOTAL_TOKENS)), None)
    total_amount = parse_number_value(total_field.value) if total_field else None

    if total_amount is not None:
        for idx, f in enumerate(fields):
            if f is total_field or not label_matches(f.label, VAT_TOKENS):
                continue
            vat_amount = parse_number_value(f.value)
            if vat_amount is None or vat_amount <= total_amount:
                continue
            fields[idx] = f.model_copy(
                update={
                    "issues": [*(f.issues or []), "VAT exceeds total."],
                    "confidence": min(
                        f.confidence if f.confidence is not None else DEFAULT_CONFIDENCE,
                        LOW_CONFIDENCE_THRESHOLD - 0.1,
                    ),
                }
            )

    return data.model_copy(update={"fields": fields})
