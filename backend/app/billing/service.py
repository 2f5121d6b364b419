import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.billing.limits import usage_snapshot
from app.billing.models import BillingHistory, Subscription
from app.billing.plans import LIMIT_METRICS, UNLIMITED, get_plan, is_downgrade
from app.billing.trial import (
    get_subscription,
    is_trial_expired,
    refresh_trial_state,
    trial_days_remaining,
)
from app.core.config import settings
from app.db.ids import make_id
from app.tenants.models import Tenant

logger = logging.getLogger(__name__)

BILLING_PERIOD = timedelta(days=30)


class PlanChangeError(ValueError):
    pass


@dataclass
class PlanChangeResult:
    success: bool
    message: str
    requires_checkout: bool = False
    subscription: Subscription | None = None


def start_trial_subscription(db: Session, tenant_id: str, now: datetime | None = None) -> Subscription:
    now = now or datetime.utcnow()
    trial_end = now + timedelta(days=settings.TRIAL_DAYS)
    sub = Subscription(
        id=make_id("sub"),
        tenant_id=tenant_id,
        plan="FREE",
        status="TRIALING",
        trial_ends_at=trial_end,
        is_trial_expired=False,
        current_period_start=now,
        current_period_end=trial_end,
        cancel_at_period_end=False,
    )
    db.add(sub)
    return sub


def create_free_subscription(db: Session, tenant_id: str, now: datetime | None = None) -> Subscription:
    now = now or datetime.utcnow()
    sub = Subscription(
        id=make_id("sub"),
        tenant_id=tenant_id,
        plan="FREE",
        status="ACTIVE",
        is_trial_expired=False,
        current_period_start=now,
        current_period_end=now + BILLING_PERIOD,
        cancel_at_period_end=False,
    )
    db.add(sub)
    return sub


def get_subscription_status(db: Session, tenant_id: str, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    sub = get_subscription(db, tenant_id)
    if sub is None:
        tenant = db.get(Tenant, tenant_id)
        return {
            "is_active": True,
            "current_plan": tenant.plan if tenant else "FREE",
            "status": "NONE",
            "trial_ends_at": None,
            "is_trial_expired": False,
            "trial_days_remaining": None,
            "current_period_end": None,
            "cancel_at_period_end": False,
            "next_billing_date": None,
        }

    refresh_trial_state(db, sub, now)
    expired = is_trial_expired(sub, now)
    is_active = sub.status == "ACTIVE" or (sub.status == "TRIALING" and not expired)
    next_billing = None
    if sub.status == "ACTIVE" and not sub.cancel_at_period_end and sub.plan != "FREE":
        next_billing = sub.current_period_end
    return {
        "is_active": is_active,
        "current_plan": sub.plan,
        "status": sub.status,
        "trial_ends_at": sub.trial_ends_at,
        "is_trial_expired": expired,
        "trial_days_remaining": trial_days_remaining(sub, now),
        "current_period_end": sub.current_period_end,
        "cancel_at_period_end": sub.cancel_at_period_end,
        "next_billing_date": next_billing,
    }


def record_plan_change(
    db: Session,
    tenant_id: str,
    from_plan: str | None,
    to_plan: str,
    change_type: str,
    now: datetime | None = None,
    metadata: dict | None = None,
) -> BillingHistory:
    now = now or datetime.utcnow()
    plan = get_plan(to_plan)
    entry = BillingHistory(
        id=make_id("bh"),
        tenant_id=tenant_id,
        invoice_number=f"PLAN_CHANGE_{int(now.timestamp() * 1000)}",
        amount=float(plan.price) if plan else 0.0,
        currency="USD",
        status="PENDING",
        plan=to_plan,
        plan_change=change_type,
        description=f"Plan change: {from_plan or 'NONE'} -> {to_plan}",
        billing_period_start=now,
        billing_period_end=now + BILLING_PERIOD,
        metadata_json={"from_plan": from_plan, "to_plan": to_plan, **(metadata or {})},
        created_at=now,
    )
    db.add(entry)
    return entry


def validate_downgrade(db: Session, tenant_id: str, target_plan: str) -> str | None:
    """Returns an error message when current usage would not fit the target plan."""
    plan = get_plan(target_plan)
    if plan is None:
        return "Invalid plan"
    usage = usage_snapshot(db, tenant_id)
    for metric in LIMIT_METRICS:
        if metric in ("conversations", "api_calls"):
            # monthly counters reset; they never block a downgrade
            continue
        limit = plan.limits.get(metric)
        if limit != UNLIMITED and usage[metric] > limit:
            return f"Cannot downgrade: {metric} usage ({usage[metric]}) exceeds new plan limit ({limit})"
    return None


def change_plan(db: Session, tenant_id: str, target_plan: str, now: datetime | None = None) -> PlanChangeResult:
    plan = get_plan(target_plan)
    if plan is None:
        raise PlanChangeError("Invalid plan")
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise PlanChangeError("Tenant not found")

    sub = get_subscription(db, tenant_id)
    current = sub.plan if sub else tenant.plan
    if current == plan.id and (sub is None or sub.status == "ACTIVE"):
        return PlanChangeResult(True, f"Already on the {plan.name} plan", subscription=sub)

    if is_downgrade(current, plan.id):
        error = validate_downgrade(db, tenant_id, plan.id)
        if error:
            raise PlanChangeError(error)

    if plan.id == "FREE":
        return downgrade_to_free(db, tenant_id, now=now)

    if sub is not None and sub.external_subscription_id:
        change_type = "DOWNGRADE" if is_downgrade(current, plan.id) else "UPGRADE"
        sub.previous_plan = current
        sub.plan = plan.id
        tenant.plan = plan.id
        record_plan_change(db, tenant_id, current, plan.id, change_type, now)
        db.commit()
        logger.info("Plan changed tenant=%s %s -> %s", tenant_id, current, plan.id)
        return PlanChangeResult(True, f"Plan changed to {plan.name}", subscription=sub)

    return PlanChangeResult(
        True,
        "Plan change requires checkout with the payment processor",
        requires_checkout=True,
        subscription=sub,
    )


def downgrade_to_free(db: Session, tenant_id: str, now: datetime | None = None) -> PlanChangeResult:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise PlanChangeError("Tenant not found")
    now = now or datetime.utcnow()
    sub = get_subscription(db, tenant_id)
    previous = sub.plan if sub else tenant.plan

    tenant.plan = "FREE"
    if sub is None:
        sub = create_free_subscription(db, tenant_id, now)
        sub.status = "INACTIVE"
    else:
        if previous != "FREE":
            sub.previous_plan = previous
        sub.plan = "FREE"
        sub.status = "INACTIVE"
        sub.cancel_at_period_end = False
    # the trial is over once the tenant settles on the free tier
    sub.is_trial_expired = True

    if previous != "FREE":
        record_plan_change(db, tenant_id, previous, "FREE", "DOWNGRADE", now)
    db.commit()
    logger.info("Tenant downgraded to FREE tenant=%s previous=%s", tenant_id, previous)
    return PlanChangeResult(True, "Downgraded to the Free plan", subscription=sub)


def cancel_subscription(db: Session, tenant_id: str, now: datetime | None = None) -> Subscription:
    sub = get_subscription(db, tenant_id)
    if sub is None:
        raise LookupError("No subscription found")
    if not sub.external_subscription_id:
        raise PlanChangeError("No paid subscription to cancel")
    if sub.status == "CANCELED":
        return sub
    sub.status = "CANCELED"
    sub.cancel_at_period_end = True
    record_plan_change(db, tenant_id, sub.plan, sub.plan, "CANCELLATION", now)
    db.commit()
    logger.info("Subscription canceled tenant=%s plan=%s", tenant_id, sub.plan)
    return sub


def reactivate_subscription(db: Session, tenant_id: str, now: datetime | None = None) -> Subscription:
    sub = get_subscription(db, tenant_id)
    if sub is None:
        raise LookupError("No subscription found")
    if not sub.external_subscription_id:
        raise PlanChangeError("No paid subscription to reactivate")
    if sub.status != "CANCELED" and not sub.cancel_at_period_end:
        raise PlanChangeError("Subscription is not canceled")
    sub.status = "ACTIVE"
    sub.cancel_at_period_end = False
    record_plan_change(db, tenant_id, sub.plan, sub.plan, "REACTIVATION", now)
    db.commit()
    logger.info("Subscription reactivated tenant=%s plan=%s", tenant_id, sub.plan)
    return sub


def billing_history(db: Session, tenant_id: str, limit: int = 50) -> list[BillingHistory]:
    return list(
        db.execute(
            select(BillingHistory)
            .where(BillingHistory.tenant_id == tenant_id)
            .order_by(BillingHistory.created_at.desc())
            .limit(max(1, min(limit, 200)))
        ).scalars().all()
    )
