"""
Usage counter and entitlement stores.

Each store has a durable SQLAlchemy implementation and a process-local one.
The process-local stores are only correct for a single instance; they exist
for local and offline runs.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from invoice_intake.core.models import utcnow
from invoice_intake.modules.usage.models import Entitlement, UsageCounter

PRO_STATUSES = {"active", "trialing", "past_due"}


@dataclass(frozen=True)
class UsageScope:
    kind: str
    id: str

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"


@dataclass(frozen=True)
class ReserveResult:
    allowed: bool
    limit: int
    count: int
    remaining: int


@dataclass(frozen=True)
class EntitlementInfo:
    plan: str = "free"
    status: str | None = None

    @property
    def is_pro(self) -> bool:
        return self.plan == "pro" and (not self.status or self.status in PRO_STATUSES)


def _result(*, allowed: bool, limit: int, count: int) -> ReserveResult:
    return ReserveResult(
        allowed=allowed, limit=limit, count=count, remaining=max(0, limit - count)
    )


class UsageCounterStore:
    def reserve(self, scope: UsageScope, *, date_key: str, limit: int) -> ReserveResult:  # pragma: no cover
        """Increment the (scope, day) counter only while it is below ``limit``."""
        raise NotImplementedError

    def get_count(self, scope: UsageScope, *, date_key: str) -> int:  # pragma: no cover
        raise NotImplementedError


class SqlUsageCounterStore(UsageCounterStore):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _ensure_row(self, session: Session, scope: UsageScope, date_key: str) -> None:
        exists = session.scalar(
            select(UsageCounter.count).where(
                UsageCounter.scope_kind == scope.kind,
                UsageCounter.scope_id == scope.id,
                UsageCounter.date_key == date_key,
            )
        )
        session.rollback()
        if exists is not None:
            return
        session.add(
            UsageCounter(scope_kind=scope.kind, scope_id=scope.id, date_key=date_key, count=0)
        )
        try:
            session.commit()
        except IntegrityError:
            # Another request created the row first.
            session.rollback()

    def reserve(self, scope: UsageScope, *, date_key: str, limit: int) -> ReserveResult:
        with self._session_factory() as session:
            self._ensure_row(session, scope, date_key)
            # Compare-and-increment in one statement: the row lock taken by the
            # UPDATE serialises concurrent reservations at the limit boundary.
            stmt = (
                update(UsageCounter)
                .where(
                    UsageCounter.scope_kind == scope.kind,
                    UsageCounter.scope_id == scope.id,
                    UsageCounter.date_key == date_key,
                    UsageCounter.count < limit,
                )
                .values(count=UsageCounter.count + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if session.get_bind().dialect.update_returning:
                returned = session.execute(stmt.returning(UsageCounter.count)).scalar_one_or_none()
                allowed = returned is not None
                count = returned if allowed else self._read_count(session, scope, date_key)
            else:
                allowed = session.execute(stmt).rowcount == 1
                # Same transaction as the UPDATE, so only this reservation is visible.
                count = self._read_count(session, scope, date_key)
            session.commit()
        return _result(allowed=allowed, limit=limit, count=int(count))

    def get_count(self, scope: UsageScope, *, date_key: str) -> int:
        with self._session_factory() as session:
            return self._read_count(session, scope, date_key)

    def _read_count(self, session: Session, scope: UsageScope, date_key: str) -> int:
        count = session.scalar(
            select(UsageCounter.count).where(
                UsageCounter.scope_kind == scope.kind,
                UsageCounter.scope_id == scope.id,
                UsageCounter.date_key == date_key,
            )
        )
        return int(count or 0)


class MemoryUsageCounterStore(UsageCounterStore):
    """One entry per scope; a new day overwrites the previous day's count."""

    def __init__(self) -> None:
        self._counts: dict[str, tuple[str, int]] = {}
        self._lock = threading.Lock()

    def _current(self, scope: UsageScope, date_key: str) -> int:
        stored_day, count = self._counts.get(scope.key, (date_key, 0))
        return count if stored_day == date_key else 0

    def reserve(self, scope: UsageScope, *, date_key: str, limit: int) -> ReserveResult:
        with self._lock:
            current = self._current(scope, date_key)
            if current >= limit:
                return _result(allowed=False, limit=limit, count=current)
            self._counts[scope.key] = (date_key, current + 1)
            return _result(allowed=True, limit=limit, count=current + 1)

    def get_count(self, scope: UsageScope, *, date_key: str) -> int:
        with self._lock:
            return self._current(scope, date_key)


class EntitlementStore:
    def get(self, user_id: str) -> EntitlementInfo:  # pragma: no cover
        raise NotImplementedError

    def upsert(self, user_id: str, *, plan: str, status: str | None = None) -> EntitlementInfo:  # pragma: no cover
        raise NotImplementedError


class SqlEntitlementStore(EntitlementStore):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, user_id: str) -> EntitlementInfo:
        with self._session_factory() as session:
            row = session.get(Entitlement, user_id)
            if not row:
                return EntitlementInfo()
            return EntitlementInfo(plan=row.plan or "free", status=row.status)

    def upsert(self, user_id: str, *, plan: str, status: str | None = None) -> EntitlementInfo:
        with self._session_factory() as session:
            row = session.get(Entitlement, user_id)
            if not row:
                row = Entitlement(user_id=user_id)
            row.plan = plan
            row.status = status
            session.add(row)
            session.commit()
        return EntitlementInfo(plan=plan, status=status)


class MemoryEntitlementStore(EntitlementStore):
    def __init__(self) -> None:
        self._rows: dict[str, EntitlementInfo] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> EntitlementInfo:
        with self._lock:
            return self._rows.get(user_id, EntitlementInfo())

    def upsert(self, user_id: str, *, plan: str, status: str | None = None) -> EntitlementInfo:
        info = EntitlementInfo(plan=plan, status=status)
        with self._lock:
            self._rows[user_id] = info
        return info
