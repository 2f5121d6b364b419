"""Processor-neutral billing webhook.

Events are JSON objects ``{"id", "type", "data"}`` signed with
``X-Billing-Signature: sha256=<hex hmac of the raw body>``. Timestamps in
``data`` are unix seconds; amounts are minor units (cents).
"""
import hashlib
import hmac
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.billing.models import BillingHistory, Subscription
from app.billing.plans import get_plan
from app.billing.trial import get_subscription
from app.db.ids import make_id
from app.db.tenant_db import create_tenant_db
from app.notifications.service import notify_admin
from app.tenants.models import Tenant

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "active": "ACTIVE",
    "trialing": "TRIALING",
    "past_due": "PAST_DUE",
    "canceled": "CANCELED",
    "cancelled": "CANCELED",
    "unpaid": "UNPAID",
    "incomplete": "INACTIVE",
    "incomplete_expired": "INACTIVE",
    "inactive": "INACTIVE",
}


class WebhookEventError(ValueError):
    pass


def sign_payload(payload: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, header_value: str | None, secret: str) -> bool:
    if not header_value or not secret:
        return False
    header_value = header_value.strip()
    if not header_value.startswith("sha256="):
        return False
    return hmac.compare_digest(sign_payload(payload, secret), header_value)


def _ts(value) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        raise WebhookEventError(f"Invalid timestamp: {value!r}")


def map_status(value: str | None) -> str:
    return _STATUS_MAP.get((value or "").strip().lower(), "INACTIVE")


def _find_subscription(db: Session, data: dict) -> Subscription | None:
    if data.get("tenant_id"):
        sub = get_subscription(db, data["tenant_id"])
        if sub is not None:
            return sub
    if data.get("subscription_id"):
        sub = db.execute(
            select(Subscription).where(Subscription.external_subscription_id == data["subscription_id"])
        ).scalar_one_or_none()
        if sub is not None:
            return sub
    if data.get("customer_id"):
        return db.execute(
            select(Subscription).where(Subscription.external_customer_id == data["customer_id"])
        ).scalar_one_or_none()
    return None


def _upsert_subscription(db: Session, data: dict, now: datetime) -> str:
    sub = _find_subscription(db, data)
    tenant_id = sub.tenant_id if sub else data.get("tenant_id")
    if not tenant_id or db.get(Tenant, tenant_id) is None:
        raise WebhookEventError("Cannot resolve tenant for subscription event")

    status = map_status(data.get("status"))
    trial_end = _ts(data.get("trial_end"))
    trial_expired = trial_end is not None and trial_end <= now
    final_trial_expired = (status == "TRIALING" and trial_expired) or (status == "ACTIVE" and trial_end is None)

    if sub is None:
        sub = Subscription(id=make_id("sub"), tenant_id=tenant_id, plan="FREE")
        db.add(sub)
    plan = get_plan(data.get("plan"))
    if plan is not None and plan.id != sub.plan:
        sub.previous_plan = sub.plan
        sub.plan = plan.id
    sub.status = status
    sub.trial_ends_at = trial_end
    sub.is_trial_expired = final_trial_expired
    sub.current_period_start = _ts(data.get("current_period_start")) or sub.current_period_start
    sub.current_period_end = _ts(data.get("current_period_end")) or sub.current_period_end
    sub.cancel_at_period_end = bool(data.get("cancel_at_period_end", False))
    sub.external_customer_id = data.get("customer_id") or sub.external_customer_id
    sub.external_subscription_id = data.get("subscription_id") or sub.external_subscription_id

    if status == "ACTIVE" and not trial_expired:
        db.get(Tenant, tenant_id).plan = sub.plan
    db.commit()
    logger.info("Subscription synced tenant=%s status=%s plan=%s", tenant_id, status, sub.plan)
    return "processed"


def _subscription_deleted(db: Session, data: dict, now: datetime) -> str:
    sub = _find_subscription(db, data)
    if sub is None:
        logger.warning("subscription.deleted for unknown subscription %s", data.get("subscription_id"))
        return "ignored"
    sub.previous_plan = sub.plan
    sub.plan = "FREE"
    sub.status = "CANCELED"
    sub.cancel_at_period_end = True
    tenant = db.get(Tenant, sub.tenant_id)
    if tenant is not None:
        tenant.plan = "FREE"
    db.commit()
    logger.info("Subscription deleted tenant=%s", sub.tenant_id)
    return "processed"


def _record_invoice(db: Session, sub: Subscription, data: dict, status: str, amount_key: str) -> bool:
    invoice_id = data.get("invoice_id")
    if invoice_id:
        existing = db.execute(
            select(BillingHistory).where(
                BillingHistory.tenant_id == sub.tenant_id,
                BillingHistory.external_invoice_id == invoice_id,
                BillingHistory.status == status,
            )
        ).scalar_one_or_none()
        if existing is not None:
            return False
    db.add(
        BillingHistory(
            id=make_id("bh"),
            tenant_id=sub.tenant_id,
            invoice_number=data.get("number") or invoice_id or f"INV_{make_id('x')}",
            amount=(data.get(amount_key) or 0) / 100,
            currency=(data.get("currency") or "usd").upper(),
            status=status,
            plan=sub.plan,
            external_invoice_id=invoice_id,
            billing_period_start=_ts(data.get("period_start")),
            billing_period_end=_ts(data.get("period_end")),
            metadata_json={"subscription_id": data.get("subscription_id")},
        )
    )
    return True


def _invoice_paid(db: Session, data: dict, now: datetime) -> str:
    sub = _find_subscription(db, data)
    if sub is None:
        logger.warning("invoice.paid for unknown subscription %s", data.get("subscription_id"))
        return "ignored"
    if not _record_invoice(db, sub, data, "PAID", "amount_paid"):
        return "duplicate"
    sub.status = "ACTIVE"
    sub.is_trial_expired = False
    tenant = db.get(Tenant, sub.tenant_id)
    if tenant is not None:
        tenant.plan = sub.plan
    db.commit()
    return "processed"


def _invoice_failed(db: Session, data: dict, now: datetime) -> str:
    sub = _find_subscription(db, data)
    if sub is None:
        logger.warning("invoice.payment_failed for unknown subscription %s", data.get("subscription_id"))
        return "ignored"
    if not _record_invoice(db, sub, data, "FAILED", "amount_due"):
        return "duplicate"
    sub.status = "PAST_DUE"
    db.commit()
    notify_admin(
        create_tenant_db(db, sub.tenant_id),
        title="Payment failed",
        message="We could not process your latest payment. Update your billing details to avoid interruption.",
        type="BILLING",
        priority="HIGH",
        action_url="/dashboard/billing",
        metadata={"type": "payment_failed", "invoice_id": data.get("invoice_id")},
    )
    return "processed"


def _trial_will_end(db: Session, data: dict, now: datetime) -> str:
    sub = _find_subscription(db, data)
    if sub is None:
        return "ignored"
    trial_end = _ts(data.get("trial_end"))
    if trial_end is not None:
        sub.trial_ends_at = trial_end
        db.commit()
    return "processed"


_HANDLERS = {
    "subscription.created": _upsert_subscription,
    "subscription.updated": _upsert_subscription,
    "subscription.deleted": _subscription_deleted,
    "invoice.paid": _invoice_paid,
    "invoice.payment_failed": _invoice_failed,
    "subscription.trial_will_end": _trial_will_end,
}


def handle_event(db: Session, event: dict, now: datetime | None = None) -> str:
    if not isinstance(event, dict) or not event.get("type"):
        raise WebhookEventError("Event type is required")
    data = event.get("data") or {}
    if not isinstance(data, dict):
        raise WebhookEventError("Event data must be an object")

    handler = _HANDLERS.get(event["type"])
    if handler is None:
        logger.info("Ignoring billing event type=%s id=%s", event["type"], event.get("id"))
        return "ignored"
    return handler(db, data, now or datetime.utcnow())
