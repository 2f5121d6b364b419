from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from app.billing.router import cancel, invoices, list_plans, reactivate, trial_status, upgrade, usage
from app.billing.schemas import UpgradeRequest
from app.billing.trial import can_perform_paid_action
from conftest import expired_trial, make_subscription


def test_trial_status_reports_expiry(db, tenant, tdb, admin):
    expired_trial(db, tenant, days_ago=2)
    status = trial_status(tdb=tdb, user=admin)
    assert status.is_trialing is True
    assert status.is_trial_expired is True
    assert status.days_remaining == 0
    assert status.can_perform_paid_action is False
    assert "trial has ended" in status.reason


def test_trial_status_while_trialing(db, tenant, tdb, admin):
    make_subscription(db, tenant, status="TRIALING", trial_ends_at=datetime.utcnow() + timedelta(days=3, hours=1))
    status = trial_status(tdb=tdb, user=admin)
    assert status.days_remaining == 4
    assert status.can_perform_paid_action is True


def test_upgrade_without_processor_subscription_needs_checkout(db, tenant, tdb, admin):
    make_subscription(db, tenant, status="ACTIVE")
    out = upgrade(UpgradeRequest(plan="STARTER"), tdb=tdb, user=admin)
    assert out.requires_checkout is True
    assert out.plan == "FREE"


def test_downgrade_blocked_by_usage_is_400(db, tenant, tdb, admin):
    tenant.plan = "STARTER"
    db.commit()
    make_subscription(db, tenant, status="ACTIVE", external_subscription_id="ext_1")
    tdb.create_bot(name="one")
    tdb.create_bot(name="two")
    with pytest.raises(HTTPException) as exc:
        upgrade(UpgradeRequest(plan="FREE"), tdb=tdb, user=admin)
    assert exc.value.status_code == 400
    assert "bots usage (2)" in exc.value.detail


def test_cancel_reactivate_and_invoices(db, tenant, tdb, admin):
    with pytest.raises(HTTPException) as exc:
        cancel(tdb=tdb, user=admin)
    assert exc.value.status_code == 404

    make_subscription(db, tenant, status="ACTIVE", plan="STARTER", external_subscription_id="ext_c")
    assert cancel(tdb=tdb, user=admin).status == "CANCELED"
    assert reactivate(tdb=tdb, user=admin).status == "ACTIVE"
    with pytest.raises(HTTPException) as exc:
        reactivate(tdb=tdb, user=admin)
    assert exc.value.status_code == 400

    history = invoices(limit=50, tdb=tdb, user=admin)
    assert sorted(h.plan_change for h in history) == ["CANCELLATION", "REACTIVATION"]


def test_plans_and_usage_views(tdb, admin):
    plans = list_plans(tdb=tdb, user=admin)["plans"]
    assert [p["id"] for p in plans] == ["FREE", "STARTER", "PROFESSIONAL", "ENTERPRISE"]

    tdb.create_bot(name="only")
    view = usage(tdb=tdb, user=admin)
    assert view["usage"]["bots"]["current"] == 1
    assert "Upgrade to add more bots" in view["recommendations"]


def test_expired_trial_cannot_cancel_its_way_to_active(db, tenant, tdb, admin):
    expired_trial(db, tenant)

    with pytest.raises(HTTPException) as exc:
        cancel(tdb=tdb, user=admin)
    assert exc.value.status_code == 400
    with pytest.raises(HTTPException) as exc:
        reactivate(tdb=tdb, user=admin)
    assert exc.value.status_code == 400

    db.expire_all()
    check = can_perform_paid_action(db, tenant.id)
    assert check.allowed is False
    assert invoices(limit=50, tdb=tdb, user=admin) == []
