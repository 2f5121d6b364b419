from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from app.billing.guards import enforce_plan_limit, ensure_plan_allows, require_paid_action
from app.billing.limits import (
    UNLIMITED,
    check_action_allowed,
    current_usage,
    get_plan_comparison,
    get_upgrade_recommendations,
    get_usage_check,
    is_feature_available,
    month_start,
)
from app.billing.plans import PLANS, get_plan, is_downgrade, plan_rank
from app.db.tenant_db import create_tenant_db
from app.system.usage_service import record_api_usage
from conftest import expired_trial, make_tenant


def test_plan_catalogue_limits():
    assert PLANS["FREE"].limits.as_dict() == {
        "bots": 1,
        "knowledge_bases": 1,
        "documents": 100,
        "conversations": 1000,
        "users": 2,
        "api_calls": 10000,
        "storage": 100,
    }
    assert PLANS["STARTER"].price == 29
    assert PLANS["ENTERPRISE"].limits.bots == UNLIMITED
    assert get_plan("professional").id == "PROFESSIONAL"
    assert get_plan("gold") is None
    assert plan_rank("ENTERPRISE") > plan_rank("STARTER") > plan_rank("FREE")
    assert is_downgrade("PROFESSIONAL", "STARTER")
    assert not is_downgrade("FREE", "STARTER")


def test_free_plan_allows_one_bot(db, tenant, tdb):
    first = check_action_allowed(db, tenant.id, "bots")
    assert first.allowed and first.current_usage == 0 and first.remaining == 1

    tdb.create_bot(name="Only")
    second = check_action_allowed(db, tenant.id, "bots")
    assert second.allowed is False
    assert second.reason == "Plan limit exceeded. bots limit: 1"
    assert second.remaining == 0


def test_unlimited_plan_reports_minus_one(db):
    big = make_tenant(db, "bigco", plan="ENTERPRISE")
    result = check_action_allowed(db, big.id, "bots", increment=500)
    assert result.allowed is True
    assert result.limit == UNLIMITED
    assert result.remaining == UNLIMITED


def test_missing_tenant_and_unknown_plan_are_denied(db):
    assert check_action_allowed(db, "t_missing", "bots").reason == "Tenant not found"
    odd = make_tenant(db, "odd", plan="LEGACY")
    assert check_action_allowed(db, odd.id, "bots").reason == "Invalid plan"
    with pytest.raises(ValueError):
        check_action_allowed(db, odd.id, "widgets")


def test_monthly_metrics_only_count_this_month(db, tenant, tdb):
    bot = tdb.create_bot(name="Helper")
    old = tdb.create_conversation(bot_id=bot.id)
    old.started_at = month_start() - timedelta(days=2)
    db.commit()
    tdb.create_conversation(bot_id=bot.id)
    record_api_usage(db, tenant_id=tenant.id, endpoint="/api/v1/public/chat")

    assert current_usage(db, tenant.id, "conversations") == 1
    assert current_usage(db, tenant.id, "api_calls") == 1


def test_storage_is_rounded_up_to_megabytes(db, tenant, tdb):
    bot = tdb.create_bot(name="Helper")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="Docs")
    tdb.add_document(knowledge_base_id=kb.id, title="small", content="x", size_bytes=10)
    assert current_usage(db, tenant.id, "storage") == 1


def test_usage_check_and_recommendations(db, tenant, tdb, admin):
    tdb.create_bot(name="Helper")
    check = get_usage_check(db, tenant.id)
    assert check["plan"] == "FREE"
    assert check["usage"]["bots"] == {"current": 1, "limit": 1, "remaining": 0, "percentage": 100}
    # one admin out of two seats is 50%
    assert check["usage"]["users"]["percentage"] == 50

    recs = get_upgrade_recommendations(db, tenant.id)
    assert "Upgrade to add more bots" in recs
    assert "Upgrade to invite more team members" not in recs


def test_feature_flags_and_comparison(db, tenant):
    assert is_feature_available(db, tenant.id, "basic_chat")
    assert not is_feature_available(db, tenant.id, "white_label")
    rows = get_plan_comparison("STARTER")
    current = [r for r in rows if r["is_current"]]
    assert [r["id"] for r in current] == ["STARTER"]
    assert [r["id"] for r in rows if r["is_upgrade"]] == ["PROFESSIONAL", "ENTERPRISE"]


def test_http_guards(db, tenant, tdb):
    tdb.create_bot(name="Only")
    with pytest.raises(HTTPException) as exc:
        ensure_plan_allows(db, tenant.id, "bots", status_code=429)
    assert exc.value.status_code == 429

    with pytest.raises(HTTPException) as exc:
        enforce_plan_limit("bots")(tdb=tdb)
    assert exc.value.status_code == 403

    assert enforce_plan_limit("knowledge_bases")(tdb=tdb).allowed is True


def test_require_paid_action_dependency(db):
    late = make_tenant(db, "late")
    expired_trial(db, late)
    with pytest.raises(HTTPException) as exc:
        require_paid_action(tdb=create_tenant_db(db, late.id))
    assert exc.value.status_code == 403
    assert "trial has ended" in exc.value.detail

    fine = make_tenant(db, "fine")
    tdb = create_tenant_db(db, fine.id)
    assert require_paid_action(tdb=tdb) is tdb


def test_month_start():
    assert month_start(datetime(2026, 5, 17, 13, 4)) == datetime(2026, 5, 1)
