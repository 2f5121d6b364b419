import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.billing.plans import (
    LIMIT_METRICS,
    PLAN_FEATURE_FLAGS,
    PLAN_ORDER,
    PLANS,
    UNLIMITED,
    get_plan,
    plan_rank,
)
from app.db.tenant_db import create_tenant_db
from app.tenants.models import Tenant

BYTES_PER_MB = 1024 * 1024
RECOMMEND_AT_PERCENT = 80

_UPGRADE_MESSAGES = {
    "bots": "Upgrade to add more bots",
    "knowledge_bases": "Upgrade to add more knowledge bases",
    "documents": "Upgrade to upload more documents",
    "conversations": "Upgrade to handle more conversations each month",
    "users": "Upgrade to invite more team members",
    "api_calls": "Upgrade for a higher monthly API call allowance",
    "storage": "Upgrade for more document storage",
}


@dataclass(frozen=True)
class PlanCheckResult:
    allowed: bool
    reason: str | None
    current_usage: int
    limit: int
    remaining: int


def month_start(now: datetime | None = None) -> datetime:
    now = now or datetime.utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def current_usage(db: Session, tenant_id: str, metric: str, now: datetime | None = None) -> int:
    tdb = create_tenant_db(db, tenant_id)
    if metric == "bots":
        return tdb.count_bots()
    if metric == "knowledge_bases":
        return tdb.count_knowledge_bases()
    if metric == "documents":
        return tdb.count_documents()
    if metric == "conversations":
        return tdb.count_conversations_since(month_start(now))
    if metric == "users":
        return tdb.count_users()
    if metric == "api_calls":
        return tdb.count_api_calls_since(month_start(now))
    if metric == "storage":
        return math.ceil(tdb.storage_bytes() / BYTES_PER_MB)
    raise ValueError(f"Unknown plan metric: {metric}")


def check_action_allowed(
    db: Session,
    tenant_id: str,
    metric: str,
    increment: int = 1,
    now: datetime | None = None,
) -> PlanCheckResult:
    if metric not in LIMIT_METRICS:
        raise ValueError(f"Unknown plan metric: {metric}")

    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        return PlanCheckResult(False, "Tenant not found", 0, 0, 0)
    plan = get_plan(tenant.plan)
    if plan is None:
        return PlanCheckResult(False, "Invalid plan", 0, 0, 0)

    limit = plan.limits.get(metric)
    usage = current_usage(db, tenant_id, metric, now)
    if limit == UNLIMITED:
        return PlanCheckResult(True, None, usage, UNLIMITED, UNLIMITED)

    allowed = usage + increment <= limit
    return PlanCheckResult(
        allowed=allowed,
        reason=None if allowed else f"Plan limit exceeded. {metric} limit: {limit}",
        current_usage=usage,
        limit=limit,
        remaining=max(0, limit - usage),
    )


def usage_snapshot(db: Session, tenant_id: str, now: datetime | None = None) -> dict[str, int]:
    return {metric: current_usage(db, tenant_id, metric, now) for metric in LIMIT_METRICS}


def get_usage_check(db: Session, tenant_id: str, now: datetime | None = None) -> dict:
    tenant = db.get(Tenant, tenant_id)
    plan = get_plan(tenant.plan if tenant else None) or PLANS["FREE"]
    usage = usage_snapshot(db, tenant_id, now)
    metrics = {}
    for metric in LIMIT_METRICS:
        limit = plan.limits.get(metric)
        used = usage[metric]
        if limit == UNLIMITED:
            metrics[metric] = {"current": used, "limit": UNLIMITED, "remaining": UNLIMITED, "percentage": 0}
        else:
            metrics[metric] = {
                "current": used,
                "limit": limit,
                "remaining": max(0, limit - used),
                "percentage": min(100, round(used / limit * 100)) if limit else 100,
            }
    return {"plan": plan.id, "usage": metrics}


def get_upgrade_recommendations(db: Session, tenant_id: str, now: datetime | None = None) -> list[str]:
    check = get_usage_check(db, tenant_id, now)
    if check["plan"] == PLAN_ORDER[-1]:
        return []
    return [
        _UPGRADE_MESSAGES[metric]
        for metric, row in check["usage"].items()
        if row["limit"] != UNLIMITED and row["percentage"] >= RECOMMEND_AT_PERCENT
    ]


def is_feature_available(db: Session, tenant_id: str, feature: str) -> bool:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        return False
    return feature in PLAN_FEATURE_FLAGS.get(tenant.plan, frozenset())


def get_plan_comparison(current_plan: str | None) -> list[dict]:
    current_rank = plan_rank(current_plan)
    rows = []
    for plan_id in PLAN_ORDER:
        row = PLANS[plan_id].as_dict()
        row["is_current"] = plan_id == (current_plan or "").upper()
        row["is_upgrade"] = plan_rank(plan_id) > current_rank
        row["feature_flags"] = sorted(PLAN_FEATURE_FLAGS[plan_id])
        rows.append(row)
    return rows
