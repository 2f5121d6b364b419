import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.auth.models import User
from app.auth.permissions import require_permission
from app.billing.limits import get_plan_comparison, get_upgrade_recommendations, get_usage_check
from app.billing.schemas import (
    InvoiceOut,
    PlanChangeOut,
    SubscriptionStatusOut,
    TrialStatusOut,
    UpgradeRequest,
)
from app.billing.service import (
    PlanChangeError,
    PlanChangeResult,
    billing_history,
    cancel_subscription,
    change_plan,
    get_subscription_status,
    reactivate_subscription,
)
from app.billing.trial import can_perform_paid_action, get_subscription, is_trial_expired, trial_days_remaining
from app.billing.webhooks import WebhookEventError, handle_event, verify_signature
from app.core.config import settings
from app.db.session import get_db
from app.db.tenant_db import TenantDB
from app.system.usage_service import api_usage_summary
from app.tenants.deps import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter()


def _change_out(result: PlanChangeResult) -> PlanChangeOut:
    sub = result.subscription
    return PlanChangeOut(
        success=result.success,
        message=result.message,
        requires_checkout=result.requires_checkout,
        plan=sub.plan if sub else None,
        status=sub.status if sub else None,
    )


@router.get("/plans")
def list_plans(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    tenant = tdb.get_tenant()
    return {"plans": get_plan_comparison(tenant.plan if tenant else None)}


@router.get("/subscription", response_model=SubscriptionStatusOut)
def subscription_status(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    return get_subscription_status(tdb.db, tdb.tenant_id)


@router.get("/trial", response_model=TrialStatusOut)
def trial_status(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    sub = get_subscription(tdb.db, tdb.tenant_id)
    check = can_perform_paid_action(tdb.db, tdb.tenant_id)
    return TrialStatusOut(
        is_trialing=bool(sub and sub.status == "TRIALING"),
        is_trial_expired=is_trial_expired(sub),
        trial_ends_at=sub.trial_ends_at if sub else None,
        days_remaining=trial_days_remaining(sub),
        can_perform_paid_action=check.allowed,
        reason=check.reason,
    )


@router.get("/usage")
def usage(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    check = get_usage_check(tdb.db, tdb.tenant_id)
    check["recommendations"] = get_upgrade_recommendations(tdb.db, tdb.tenant_id)
    return check


@router.get("/api-usage")
def api_usage(
    days: int = Query(default=30, ge=1, le=365),
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("analytics:view")),
):
    return api_usage_summary(tdb.db, tenant_id=tdb.tenant_id, since_days=days)


@router.post("/upgrade", response_model=PlanChangeOut)
def upgrade(
    payload: UpgradeRequest,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("api:manage")),
):
    try:
        result = change_plan(tdb.db, tdb.tenant_id, payload.plan)
    except PlanChangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(
        "Plan change requested tenant=%s plan=%s by=%s checkout=%s",
        tdb.tenant_id,
        payload.plan,
        user.id,
        result.requires_checkout,
    )
    return _change_out(result)


@router.post("/downgrade-to-free", response_model=PlanChangeOut)
def downgrade(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("api:manage")),
):
    try:
        result = change_plan(tdb.db, tdb.tenant_id, "FREE")
    except PlanChangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _change_out(result)


@router.post("/cancel", response_model=PlanChangeOut)
def cancel(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("api:manage")),
):
    try:
        sub = cancel_subscription(tdb.db, tdb.tenant_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PlanChangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _change_out(PlanChangeResult(True, "Subscription canceled", subscription=sub))


@router.post("/reactivate", response_model=PlanChangeOut)
def reactivate(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("api:manage")),
):
    try:
        sub = reactivate_subscription(tdb.db, tdb.tenant_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PlanChangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _change_out(PlanChangeResult(True, "Subscription reactivated", subscription=sub))


@router.get("/invoices", response_model=list[InvoiceOut])
def invoices(
    limit: int = Query(default=50, ge=1, le=200),
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("api:manage")),
):
    return billing_history(tdb.db, tdb.tenant_id, limit=limit)


@router.post("/webhook")
async def billing_webhook(
    request: Request,
    x_billing_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    secret = settings.BILLING_WEBHOOK_SECRET
    if not secret:
        raise HTTPException(status_code=503, detail="Billing webhook is not configured")
    if not x_billing_signature:
        raise HTTPException(status_code=400, detail="Missing signature")

    body = await request.body()
    if not verify_signature(body, x_billing_signature, secret):
        logger.warning("Rejected billing webhook with invalid signature")
        raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    try:
        outcome = handle_event(db, event)
    except WebhookEventError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Billing webhook type=%s id=%s outcome=%s", event.get("type"), event.get("id"), outcome)
    return {"received": True, "outcome": outcome}
