"""Trial lifecycle and the paid-action gate.

A subscription in ``TRIALING`` whose ``trial_ends_at`` has passed (or whose
``is_trial_expired`` flag is already set) may no longer perform paid actions.
Tenants without a subscription row are treated as free tier and allowed.
Any other status (ACTIVE, INACTIVE after a downgrade, ...) is allowed; plan
limits are enforced separately.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.billing.models import Subscription
from app.billing.trial_notifications import (
    send_trial_ending_soon_notification,
    send_trial_expired_notification,
)
from app.db.tenant_db import create_tenant_db

logger = logging.getLogger(__name__)

TRIAL_ENDED_REASON = "Your trial has ended. Upgrade to continue using this feature."


@dataclass(frozen=True)
class PaidActionCheck:
    allowed: bool
    reason: str | None = None


def get_subscription(db: Session, tenant_id: str) -> Subscription | None:
    return db.execute(
        select(Subscription).where(Subscription.tenant_id == tenant_id)
    ).scalar_one_or_none()


def is_trial_expired(subscription: Subscription | None, now: datetime | None = None) -> bool:
    if subscription is None:
        return False
    if subscription.is_trial_expired:
        return True
    if subscription.trial_ends_at is None:
        return False
    return (now or datetime.utcnow()) >= subscription.trial_ends_at


def trial_days_remaining(subscription: Subscription | None, now: datetime | None = None) -> int | None:
    if subscription is None or subscription.trial_ends_at is None:
        return None
    now = now or datetime.utcnow()
    if is_trial_expired(subscription, now):
        return 0
    return max(0, math.ceil((subscription.trial_ends_at - now).total_seconds() / 86400))


def can_perform_paid_action(db: Session, tenant_id: str, now: datetime | None = None) -> PaidActionCheck:
    try:
        subscription = get_subscription(db, tenant_id)
    except SQLAlchemyError:
        # fail open
        db.rollback()
        logger.exception("Subscription lookup failed for tenant=%s; allowing action", tenant_id)
        return PaidActionCheck(allowed=True)

    if subscription is None:
        return PaidActionCheck(allowed=True)
    if subscription.status == "TRIALING" and is_trial_expired(subscription, now):
        return PaidActionCheck(allowed=False, reason=TRIAL_ENDED_REASON)
    return PaidActionCheck(allowed=True)


def refresh_trial_state(db: Session, subscription: Subscription | None, now: datetime | None = None) -> bool:
    """Persist the TRIALING -> expired transition once. Returns True when it happened now."""
    if subscription is None or subscription.status != "TRIALING" or subscription.is_trial_expired:
        return False
    now = now or datetime.utcnow()
    if subscription.trial_ends_at is None or now < subscription.trial_ends_at:
        return False

    subscription.is_trial_expired = True
    db.commit()
    logger.info("Trial expired tenant=%s trial_ends_at=%s", subscription.tenant_id, subscription.trial_ends_at)
    send_trial_expired_notification(create_tenant_db(db, subscription.tenant_id))
    return True


def check_and_send_trial_notifications(db: Session, tenant_id: str, now: datetime | None = None) -> str | None:
    """Periodic trial sweep for one tenant. Returns which notice went out, if any."""
    subscription = get_subscription(db, tenant_id)
    if subscription is None or subscription.status != "TRIALING":
        return None
    now = now or datetime.utcnow()
    if refresh_trial_state(db, subscription, now):
        return "expired"
    if subscription.is_trial_expired:
        return None

    days = trial_days_remaining(subscription, now)
    if days is None:
        return None
    if send_trial_ending_soon_notification(create_tenant_db(db, tenant_id), days) is not None:
        return "ending_soon"
    return None
