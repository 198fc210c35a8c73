"""
Construction of the stores that hold mutable request-spanning state.

The backend is picked once, at construction. A process holds one set of
stores (`shared_stores`) shared by the app and the TTL sweep; request handlers
receive it through FastAPI dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass

from invoice_intake.core.config import settings
from invoice_intake.core.db import SessionLocal
from invoice_intake.modules.sessions.store import MemorySessionStore, SessionStore, SqlSessionStore
from invoice_intake.modules.usage.store import (
    EntitlementStore,
    MemoryEntitlementStore,
    MemoryUsageCounterStore,
    SqlEntitlementStore,
    SqlUsageCounterStore,
    UsageCounterStore,
)


@dataclass(frozen=True)
class Stores:
    counters: UsageCounterStore
    entitlements: EntitlementStore
    sessions: SessionStore


def build_stores(backend: str | None = None) -> Stores:
    backend = backend or settings.state_backend
    if backend == "memory":
        return Stores(
            counters=MemoryUsageCounterStore(),
            entitlements=MemoryEntitlementStore(),
            sessions=MemorySessionStore(),
        )
    return Stores(
        counters=SqlUsageCounterStore(SessionLocal),
        entitlements=SqlEntitlementStore(SessionLocal),
        sessions=SqlSessionStore(SessionLocal),
    )


_stores: Stores | None = None


def shared_stores() -> Stores:
    global _stores  # noqa: PLW0603
    if _stores is None:
        _stores = build_stores()
    return _stores
