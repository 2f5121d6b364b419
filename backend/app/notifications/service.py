import logging

from app.db.tenant_db import TenantDB
from app.notifications.models import Notification, NotificationPreference

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("BOT_ACTIVITY", "SYSTEM", "METRICS", "TEAM", "BILLING", "SECURITY", "KB", "WIDGET")
CATEGORIES = tuple(t.lower() for t in NOTIFICATION_TYPES)
PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


def normalize_type(value: str | None) -> str:
    value = (value or "").strip().upper()
    return value if value in NOTIFICATION_TYPES else "SYSTEM"


def normalize_category(value: str | None) -> str:
    value = (value or "").strip().lower()
    return value if value in CATEGORIES else "system"


def normalize_priority(value: str | None) -> str:
    value = (value or "").strip().upper()
    return value if value in PRIORITIES else "MEDIUM"


def create_notification(
    tdb: TenantDB,
    *,
    user_id: str,
    title: str,
    message: str,
    type: str | None = "SYSTEM",
    category: str | None = None,
    priority: str | None = None,
    action_url: str | None = None,
    metadata: dict | None = None,
) -> Notification:
    if not user_id or not title or not message:
        raise ValueError("user_id, title and message are required")
    ntype = normalize_type(type)
    return tdb.add_notification(
        user_id=user_id,
        title=title,
        message=message,
        type=ntype,
        category=normalize_category(category or ntype),
        priority=normalize_priority(priority),
        action_url=action_url,
        metadata=metadata,
    )


def notify_admin(tdb: TenantDB, **kwargs) -> Notification | None:
    """Send to the tenant's first active admin; failures are logged, never raised."""
    admin = tdb.first_admin()
    if admin is None:
        logger.info("No active admin for tenant=%s, notification skipped", tdb.tenant_id)
        return None
    try:
        return create_notification(tdb, user_id=admin.id, **kwargs)
    except Exception:
        tdb.db.rollback()
        logger.exception("Failed to create notification for tenant=%s", tdb.tenant_id)
        return None


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "category": n.category,
        "priority": n.priority,
        "title": n.title,
        "message": n.message,
        "action_url": n.action_url,
        "metadata": n.metadata_json or {},
        "is_read": n.is_read,
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def serialize_preference(p: NotificationPreference) -> dict:
    return {
        "category": p.category,
        "in_app_enabled": p.in_app_enabled,
        "email_enabled": p.email_enabled,
        "sms_enabled": p.sms_enabled,
        "frequency": p.frequency,
        "quiet_hours_start": p.quiet_hours_start,
        "quiet_hours_end": p.quiet_hours_end,
    }
