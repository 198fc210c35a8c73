from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

Scalar = Union[str, int, float, bool, None]


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


class ExtractedField(BaseModel):
    label: str
    value: Scalar = None
    confidence: float | None = None
    issues: list[str] | None = None


class ExtractedData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    fields: list[ExtractedField]
    line_items: list[dict[str, Scalar]] | None = Field(default=None, alias="lineItems")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ModelField(BaseModel):
    """One field as the model returns it, before confidence scoring."""

    label: str = Field(min_length=1)
    value: Scalar = None
    confidence: float | None = None


class ModelExtraction(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    fields: list[ModelField] = Field(min_length=1)
    line_items: list[dict[str, Scalar]] | None = Field(default=None, alias="lineItems")

    @field_validator("fields")
    @classmethod
    def _has_value(cls, fields: list[ModelField]) -> list[ModelField]:
        if not any(not is_blank(f.value) for f in fields):
            raise ValueError("No extracted field values found.")
        return fields


@dataclass(frozen=True)
class SchemaCheck:
    ok: bool
    data: ExtractedData | None = None
    error: str | None = None
    issues: list[dict[str, Any]] | None = None


def check_model_output(raw: str | None) -> SchemaCheck:
    """
    Validate raw model output against the extraction schema.

    Never raises: a malformed answer comes back as ``SchemaCheck(ok=False)``.
    """
    if not raw or not raw.strip():
        return SchemaCheck(ok=False, error="AI returned an empty response.")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return SchemaCheck(ok=False, error="Failed to parse AI response.")
    try:
        parsed = ModelExtraction.model_validate(payload)
    except ValidationError as e:
        return SchemaCheck(
            ok=False,
            error="AI response did not match expected format.",
            issues=json.loads(e.json(include_url=False)),
        )
    data = ExtractedData(
        fields=[
            ExtractedField(label=f.label, value=f.value, confidence=f.confidence)
            for f in parsed.fields
        ],
        line_items=parsed.line_items,
    )
    return SchemaCheck(ok=True, data=data)
