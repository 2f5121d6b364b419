from fastapi import APIRouter, Depends, HTTPException, Query

from app.analytics.service import DEFAULT_TIME_RANGE, dashboard_metrics, live_metrics
from app.auth.models import User
from app.auth.permissions import require_permission
from app.db.tenant_db import TenantDB
from app.tenants.deps import get_tenant_db

router = APIRouter()


@router.get("")
def analytics_dashboard(
    time_range: str = Query(default=DEFAULT_TIME_RANGE),
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("analytics:view")),
):
    try:
        return dashboard_metrics(tdb.db, tdb.tenant_id, time_range)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/live")
def analytics_live(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("analytics:view")),
):
    return live_metrics(tdb.db, tdb.tenant_id)
