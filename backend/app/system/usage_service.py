import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.ids import make_id
from app.system.usage_models import ApiUsageEvent

logger = logging.getLogger(__name__)


def _window_start_month(now: datetime | None = None) -> datetime:
    current = now or datetime.utcnow()
    return datetime(current.year, current.month, 1)


def record_api_usage(
    db: Session,
    *,
    tenant_id: str,
    endpoint: str,
    method: str = "POST",
    status_code: int = 200,
    response_time_ms: int | None = None,
    tokens_used: int = 0,
    model: str | None = None,
    user_id: str | None = None,
    bot_id: str | None = None,
    conversation_id: str | None = None,
) -> None:
    """Usage tracking never fails the request that produced it."""
    try:
        db.add(
            ApiUsageEvent(
                id=make_id("ue"),
                tenant_id=tenant_id,
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                response_time_ms=response_time_ms,
                tokens_used=max(0, int(tokens_used or 0)),
                model=model,
                user_id=user_id,
                bot_id=bot_id,
                conversation_id=conversation_id,
                created_at=datetime.utcnow(),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to record API usage tenant=%s endpoint=%s", tenant_id, endpoint)


def monthly_api_calls(db: Session, tenant_id: str, now: datetime | None = None) -> int:
    return int(
        db.execute(
            select(func.count(ApiUsageEvent.id)).where(
                ApiUsageEvent.tenant_id == tenant_id,
                ApiUsageEvent.created_at >= _window_start_month(now),
            )
        ).scalar_one()
        or 0
    )


def api_usage_summary(db: Session, *, tenant_id: str, since_days: int) -> dict:
    window = max(1, int(since_days))
    since = datetime.utcnow() - timedelta(days=window)
    scope = (ApiUsageEvent.tenant_id == tenant_id, ApiUsageEvent.created_at >= since)

    totals = db.execute(
        select(
            func.count(ApiUsageEvent.id),
            func.coalesce(func.sum(ApiUsageEvent.tokens_used), 0),
            func.avg(ApiUsageEvent.response_time_ms),
        ).where(*scope)
    ).one()

    errors = db.execute(
        select(func.count(ApiUsageEvent.id)).where(*scope, ApiUsageEvent.status_code >= 400)
    ).scalar_one()

    endpoint_rows = db.execute(
        select(ApiUsageEvent.endpoint, func.count(ApiUsageEvent.id))
        .where(*scope)
        .group_by(ApiUsageEvent.endpoint)
        .order_by(func.count(ApiUsageEvent.id).desc())
    ).all()

    model_rows = db.execute(
        select(ApiUsageEvent.model, func.coalesce(func.sum(ApiUsageEvent.tokens_used), 0))
        .where(*scope, ApiUsageEvent.model.is_not(None))
        .group_by(ApiUsageEvent.model)
    ).all()

    return {
        "window_days": window,
        "total_requests": int(totals[0] or 0),
        "total_tokens": int(totals[1] or 0),
        "avg_response_time_ms": float(totals[2]) if totals[2] is not None else None,
        "error_requests": int(errors or 0),
        "by_endpoint": [{"endpoint": e, "count": int(n)} for e, n in endpoint_rows],
        "tokens_by_model": [{"model": m, "tokens": int(t)} for m, t in model_rows],
        "month_to_date_requests": monthly_api_calls(db, tenant_id),
    }
