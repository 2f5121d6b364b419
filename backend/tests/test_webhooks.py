import json
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from app.billing.models import BillingHistory, Subscription
from app.billing.webhooks import (
    WebhookEventError,
    handle_event,
    map_status,
    sign_payload,
    verify_signature,
)
from app.core.config import settings
from app.db.session import get_db
from app.main import app
from app.notifications.models import Notification
from conftest import make_subscription

SECRET = "whsec_test"


def _ts(dt: datetime) -> int:
    return int((dt - datetime(1970, 1, 1)).total_seconds())


def test_signature_roundtrip_and_rejections():
    body = b'{"type":"invoice.paid"}'
    header = sign_payload(body, SECRET)
    assert header.startswith("sha256=")
    assert verify_signature(body, header, SECRET)
    assert not verify_signature(body + b" ", header, SECRET)
    assert not verify_signature(body, header.replace("sha256=", ""), SECRET)
    assert not verify_signature(body, None, SECRET)


def test_status_mapping():
    assert map_status("active") == "ACTIVE"
    assert map_status("past_due") == "PAST_DUE"
    assert map_status("cancelled") == "CANCELED"
    assert map_status("something_new") == "INACTIVE"


def test_subscription_created_activates_paid_plan(db, tenant):
    outcome = handle_event(
        db,
        {
            "type": "subscription.created",
            "data": {
                "tenant_id": tenant.id,
                "subscription_id": "sub_ext_9",
                "customer_id": "cus_9",
                "status": "active",
                "plan": "STARTER",
            },
        },
    )
    assert outcome == "processed"
    sub = db.query(Subscription).filter_by(tenant_id=tenant.id).one()
    assert sub.plan == "STARTER" and sub.status == "ACTIVE"
    assert sub.external_customer_id == "cus_9"
    assert tenant.plan == "STARTER"


def test_trialing_update_with_past_trial_end_is_expired(db, tenant):
    make_subscription(db, tenant, status="TRIALING", external_subscription_id="sub_ext_t")
    now = datetime(2026, 4, 1)
    handle_event(
        db,
        {
            "type": "subscription.updated",
            "data": {"subscription_id": "sub_ext_t", "status": "trialing", "trial_end": _ts(now - timedelta(days=1))},
        },
        now=now,
    )
    sub = db.query(Subscription).filter_by(tenant_id=tenant.id).one()
    assert sub.is_trial_expired is True
    assert tenant.plan == "FREE"


def test_invoice_paid_is_idempotent(db, tenant):
    make_subscription(db, tenant, status="PAST_DUE", plan="STARTER", external_subscription_id="sub_ext_p")
    event = {
        "type": "invoice.paid",
        "data": {"subscription_id": "sub_ext_p", "invoice_id": "in_1", "amount_paid": 2900, "currency": "usd"},
    }
    assert handle_event(db, event) == "processed"
    assert handle_event(db, event) == "duplicate"

    rows = db.query(BillingHistory).all()
    assert len(rows) == 1
    assert rows[0].amount == 29.0 and rows[0].status == "PAID" and rows[0].currency == "USD"
    sub = db.query(Subscription).filter_by(tenant_id=tenant.id).one()
    assert sub.status == "ACTIVE"
    assert tenant.plan == "STARTER"


def test_payment_failure_marks_past_due_and_notifies(db, tenant, admin):
    make_subscription(db, tenant, status="ACTIVE", plan="STARTER", external_subscription_id="sub_ext_f")
    handle_event(
        db,
        {"type": "invoice.payment_failed", "data": {"subscription_id": "sub_ext_f", "invoice_id": "in_2", "amount_due": 2900}},
    )
    assert db.query(Subscription).filter_by(tenant_id=tenant.id).one().status == "PAST_DUE"
    note = db.query(Notification).filter_by(user_id=admin.id).one()
    assert note.title == "Payment failed"


def test_subscription_deleted_drops_to_free(db, tenant):
    tenant.plan = "PROFESSIONAL"
    make_subscription(db, tenant, status="ACTIVE", external_subscription_id="sub_ext_d")
    assert handle_event(db, {"type": "subscription.deleted", "data": {"subscription_id": "sub_ext_d"}}) == "processed"
    sub = db.query(Subscription).filter_by(tenant_id=tenant.id).one()
    assert sub.status == "CANCELED" and sub.plan == "FREE"
    assert tenant.plan == "FREE"


def test_trial_will_end_moves_trial_end(db, tenant):
    make_subscription(db, tenant, status="TRIALING", external_subscription_id="sub_ext_w")
    new_end = datetime(2026, 5, 20, 9, 30)
    event = {"type": "subscription.trial_will_end", "data": {"subscription_id": "sub_ext_w", "trial_end": _ts(new_end)}}
    assert handle_event(db, event) == "processed"
    assert db.query(Subscription).filter_by(tenant_id=tenant.id).one().trial_ends_at == new_end

    event["data"]["subscription_id"] = "sub_unknown"
    assert handle_event(db, event) == "ignored"


def test_unknown_and_malformed_events(db):
    assert handle_event(db, {"type": "customer.updated", "data": {}}) == "ignored"
    with pytest.raises(WebhookEventError):
        handle_event(db, {"data": {}})
    with pytest.raises(WebhookEventError):
        handle_event(db, {"type": "subscription.updated", "data": {"status": "active"}})


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_webhook_endpoint_checks_configuration_and_signature(client, monkeypatch):
    body = json.dumps({"type": "customer.updated", "data": {}}).encode()

    monkeypatch.setattr(settings, "BILLING_WEBHOOK_SECRET", None)
    assert client.post("/api/v1/billing/webhook", content=body).status_code == 503

    monkeypatch.setattr(settings, "BILLING_WEBHOOK_SECRET", SECRET)
    assert client.post("/api/v1/billing/webhook", content=body).status_code == 400
    bad = client.post("/api/v1/billing/webhook", content=body, headers={"X-Billing-Signature": "sha256=00"})
    assert bad.status_code == 403

    ok = client.post(
        "/api/v1/billing/webhook",
        content=body,
        headers={"X-Billing-Signature": sign_payload(body, SECRET)},
    )
    assert ok.status_code == 200
    assert ok.json() == {"received": True, "outcome": "ignored"}


def test_webhook_endpoint_rejects_invalid_json(client, monkeypatch):
    monkeypatch.setattr(settings, "BILLING_WEBHOOK_SECRET", SECRET)
    body = b"not json"
    resp = client.post(
        "/api/v1/billing/webhook",
        content=body,
        headers={"X-Billing-Signature": sign_payload(body, SECRET)},
    )
    assert resp.status_code == 400
