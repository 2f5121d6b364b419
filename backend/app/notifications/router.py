from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth.deps import get_current_user
from app.auth.models import User
from app.db.tenant_db import TenantDB
from app.notifications.schemas import (
    MarkReadRequest,
    NotificationCreate,
    NotificationListOut,
    PreferencesUpdate,
)
from app.notifications.service import (
    CATEGORIES,
    create_notification,
    normalize_category,
    serialize_notification,
    serialize_preference,
)
from app.tenants.deps import get_tenant_db

router = APIRouter()
preferences_router = APIRouter()


@router.get("", response_model=NotificationListOut)
def list_notifications(
    status: str = Query(default="all", pattern="^(unread|all)$"),
    category: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    cursor: str | None = None,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    items, has_more = tdb.list_notifications(
        user.id,
        unread_only=status == "unread",
        category=normalize_category(category) if category else None,
        limit=limit,
        cursor=cursor,
    )
    return NotificationListOut(
        items=[serialize_notification(n) for n in items],
        unread_count=tdb.unread_notification_count(user.id),
        has_more=has_more,
        next_cursor=items[-1].id if has_more and items else None,
    )


@router.post("", status_code=201)
def create_user_notification(
    payload: NotificationCreate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    if payload.test:
        n = create_notification(
            tdb,
            user_id=user.id,
            title="Test notification",
            message="Notifications are working for your account.",
            type="SYSTEM",
            priority="LOW",
            metadata={"type": "test"},
        )
        return serialize_notification(n)

    try:
        n = create_notification(
            tdb,
            user_id=user.id,
            title=payload.title or "",
            message=payload.message or "",
            type=payload.type,
            priority=payload.priority,
            action_url=payload.action_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_notification(n)


@router.post("/mark-read")
def mark_read(
    payload: MarkReadRequest,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    if not payload.all and not payload.notification_ids:
        raise HTTPException(status_code=400, detail="Provide notification_ids or all=true")
    updated = tdb.mark_notifications_read(user.id, None if payload.all else payload.notification_ids)
    return {"updated": updated, "unread_count": tdb.unread_notification_count(user.id)}


@preferences_router.get("")
def get_preferences(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    stored = {p.category: serialize_preference(p) for p in tdb.list_notification_preferences(user.id)}
    defaults = {
        "in_app_enabled": True,
        "email_enabled": False,
        "sms_enabled": False,
        "frequency": "REALTIME",
        "quiet_hours_start": None,
        "quiet_hours_end": None,
    }
    return {"preferences": [stored.get(c) or {"category": c, **defaults} for c in CATEGORIES]}


@preferences_router.put("")
def update_preferences(
    payload: PreferencesUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    saved = []
    for pref in payload.preferences:
        category = pref.category.strip().lower()
        if category not in CATEGORIES:
            raise HTTPException(status_code=400, detail=f"Unknown notification category: {pref.category}")
        fields = pref.model_dump(exclude_unset=True, exclude={"category"})
        saved.append(serialize_preference(tdb.upsert_notification_preference(user.id, category, **fields)))
    return {"preferences": saved}
