from __future__ import annotations

from pydantic import BaseModel


class UsageOut(BaseModel):
    plan: str
    scope: str
    limit: int
    count: int
    remaining: int
    unlimited: bool


class EntitlementOut(BaseModel):
    plan: str
    status: str | None = None
