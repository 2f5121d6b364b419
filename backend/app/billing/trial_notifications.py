from datetime import datetime

from app.core.config import settings
from app.db.tenant_db import TenantDB
from app.notifications.models import Notification
from app.notifications.service import create_notification, notify_admin

ENDING_SOON_MIN_DAYS = 3
ENDING_SOON_MAX_DAYS = 7


def send_trial_start_notification(tdb: TenantDB, user_id: str, trial_ends_at: datetime) -> Notification:
    return create_notification(
        tdb,
        user_id=user_id,
        title=f"Your {settings.TRIAL_DAYS}-day trial is live! 🎉",
        message=(
            "Every feature is unlocked while you explore. "
            f"Your trial ends on {trial_ends_at.strftime('%B %d, %Y')}."
        ),
        type="BILLING",
        priority="MEDIUM",
        action_url="/dashboard/billing",
        metadata={"type": "trial_start", "trial_ends_at": trial_ends_at.isoformat()},
    )


def send_trial_ending_soon_notification(tdb: TenantDB, days_remaining: int) -> Notification | None:
    if not ENDING_SOON_MIN_DAYS <= days_remaining <= ENDING_SOON_MAX_DAYS:
        return None
    plural = "" if days_remaining == 1 else "s"
    return notify_admin(
        tdb,
        title=f"Your trial ends in {days_remaining} day{plural}",
        message="Upgrade now to keep your bots answering without interruption.",
        type="BILLING",
        priority="HIGH",
        action_url="/dashboard/billing",
        metadata={"type": "trial_ending_soon", "days_remaining": days_remaining},
    )


def send_trial_expired_notification(tdb: TenantDB) -> Notification | None:
    return notify_admin(
        tdb,
        title="Your trial has ended",
        message="Paid features are paused. Upgrade or continue on the Free plan.",
        type="BILLING",
        priority="CRITICAL",
        action_url="/billing/expired",
        metadata={"type": "trial_expired"},
    )
