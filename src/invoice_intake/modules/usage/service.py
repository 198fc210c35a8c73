from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime

from invoice_intake.core.config import settings
from invoice_intake.core.errors import AppError, ErrorCode
from invoice_intake.core.logging import get_logger, log_event
from invoice_intake.core.models import utcnow
from invoice_intake.modules.usage.store import (
    EntitlementInfo,
    EntitlementStore,
    UsageCounterStore,
    UsageScope,
)

logger = get_logger(__name__)

USAGE_LIMIT_MESSAGE = "Free tier limit reached. Upgrade to Pro for unlimited processing."


@dataclass(frozen=True)
class UsageDecision:
    allowed: bool
    unlimited: bool
    limit: int
    count: int
    remaining: int


def hash_identifier(value: str, *, salt: str | None = None) -> str:
    salt = settings.usage_salt if salt is None else salt
    return hashlib.sha256(f"{value}:{salt}".encode()).hexdigest()[:32]


def resolve_scope(*, user_id: str | None, client_ip: str | None) -> UsageScope:
    if user_id:
        return UsageScope(kind="user", id=user_id)
    return UsageScope(kind="ip", id=hash_identifier(client_ip or "unknown"))


def date_key(now: datetime | None = None) -> str:
    return (now or utcnow()).date().isoformat()


def get_entitlement(entitlements: EntitlementStore, user_id: str | None) -> EntitlementInfo:
    if not user_id:
        return EntitlementInfo()
    return entitlements.get(user_id)


def reserve_usage(
    *,
    counters: UsageCounterStore,
    entitlements: EntitlementStore,
    scope: UsageScope,
    now: datetime | None = None,
    limit: int | None = None,
) -> UsageDecision:
    """
    Take one unit of today's free quota for ``scope``.

    Pro users are never counted. Raises ``AppError(USAGE_LIMIT)`` when the
    quota is exhausted.
    """
    entitlement = get_entitlement(entitlements, scope.id if scope.kind == "user" else None)
    limit = limit or settings.free_daily_limit
    if entitlement.is_pro:
        return UsageDecision(allowed=True, unlimited=True, limit=limit, count=0, remaining=limit)

    result = counters.reserve(scope, date_key=date_key(now), limit=limit)
    if not result.allowed:
        log_event(
            logger,
            "usage.denied",
            scope=scope.kind,
            limit=result.limit,
            count=result.count,
        )
        raise AppError(
            ErrorCode.USAGE_LIMIT,
            USAGE_LIMIT_MESSAGE,
            details={"limit": result.limit, "remaining": result.remaining, "scope": scope.kind},
        )
    log_event(
        logger,
        "usage.reserved",
        scope=scope.kind,
        limit=result.limit,
        count=result.count,
        remaining=result.remaining,
    )
    return UsageDecision(
        allowed=True,
        unlimited=False,
        limit=result.limit,
        count=result.count,
        remaining=result.remaining,
    )


def usage_summary(
    *,
    counters: UsageCounterStore,
    entitlements: EntitlementStore,
    scope: UsageScope,
    now: datetime | None = None,
) -> UsageDecision:
    entitlement = get_entitlement(entitlements, scope.id if scope.kind == "user" else None)
    limit = settings.free_daily_limit
    if entitlement.is_pro:
        return UsageDecision(allowed=True, unlimited=True, limit=limit, count=0, remaining=limit)
    count = counters.get_count(scope, date_key=date_key(now))
    remaining = max(0, limit - count)
    return UsageDecision(
        allowed=remaining > 0, unlimited=False, limit=limit, count=count, remaining=remaining
    )
