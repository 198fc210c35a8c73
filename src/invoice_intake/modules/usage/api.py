from __future__ import annotations

from fastapi import APIRouter, Depends

from invoice_intake.api.deps import Stores, get_client_ip, get_optional_user_id, get_stores
from invoice_intake.modules.usage.schemas import EntitlementOut, UsageOut
from invoice_intake.modules.usage.service import get_entitlement, resolve_scope, usage_summary

router = APIRouter(tags=["usage"])


@router.get("/usage", response_model=UsageOut)
def get_usage(
    stores: Stores = Depends(get_stores),
    user_id: str | None = Depends(get_optional_user_id),
    client_ip: str | None = Depends(get_client_ip),
) -> UsageOut:
    scope = resolve_scope(user_id=user_id, client_ip=client_ip)
    summary = usage_summary(counters=stores.counters, entitlements=stores.entitlements, scope=scope)
    return UsageOut(
        plan="pro" if summary.unlimited else "free",
        scope=scope.kind,
        limit=summary.limit,
        count=summary.count,
        remaining=summary.remaining,
        unlimited=summary.unlimited,
    )


@router.get("/billing/entitlement", response_model=EntitlementOut)
def get_billing_entitlement(
    stores: Stores = Depends(get_stores),
    user_id: str | None = Depends(get_optional_user_id),
) -> EntitlementOut:
    entitlement = get_entitlement(stores.entitlements, user_id)
    return EntitlementOut(plan=entitlement.plan, status=entitlement.status)
