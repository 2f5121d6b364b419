"""HTTP-facing gates used by mutating routes."""
from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.billing.limits import PlanCheckResult, check_action_allowed
from app.billing.trial import can_perform_paid_action
from app.db.tenant_db import TenantDB
from app.tenants.deps import get_tenant_db


def ensure_paid_action(db: Session, tenant_id: str) -> None:
    check = can_perform_paid_action(db, tenant_id)
    if not check.allowed:
        raise HTTPException(status_code=403, detail=check.reason)


def ensure_plan_allows(
    db: Session, tenant_id: str, metric: str, increment: int = 1, status_code: int = 403
) -> PlanCheckResult:
    result = check_action_allowed(db, tenant_id, metric, increment)
    if not result.allowed:
        raise HTTPException(status_code=status_code, detail=result.reason)
    return result


def require_paid_action(tdb: TenantDB = Depends(get_tenant_db)) -> TenantDB:
    ensure_paid_action(tdb.db, tdb.tenant_id)
    return tdb


def enforce_plan_limit(metric: str):
    def _dep(tdb: TenantDB = Depends(get_tenant_db)) -> PlanCheckResult:
        return ensure_plan_allows(tdb.db, tdb.tenant_id, metric)

    return _dep
