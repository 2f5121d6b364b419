import pytest
from fastapi import HTTPException

from app.db.tenant_db import create_tenant_db
from app.notifications.router import (
    create_user_notification,
    get_preferences,
    list_notifications,
    mark_read,
    update_preferences,
)
from app.notifications.schemas import MarkReadRequest, NotificationCreate, PreferencesUpdate, PreferenceUpdate
from app.notifications.service import CATEGORIES, create_notification, notify_admin
from conftest import make_tenant, make_user


def _list(tdb, user, **kwargs):
    params = {"status": "all", "category": None, "limit": 20, "cursor": None}
    params.update(kwargs)
    return list_notifications(tdb=tdb, user=user, **params)


def test_create_list_and_mark_read(tdb, admin):
    first = create_user_notification(
        NotificationCreate(title="Bot live", message="Your bot is live", type="bot_activity", priority="urgent"),
        tdb=tdb,
        user=admin,
    )
    assert first["type"] == "BOT_ACTIVITY"
    assert first["category"] == "bot_activity"
    assert first["priority"] == "MEDIUM"

    test_note = create_user_notification(NotificationCreate(test=True), tdb=tdb, user=admin)
    assert test_note["metadata"] == {"type": "test"}

    listing = _list(tdb, admin)
    assert listing.unread_count == 2
    assert {n["id"] for n in listing.items} == {first["id"], test_note["id"]}

    result = mark_read(MarkReadRequest(notification_ids=[first["id"]]), tdb=tdb, user=admin)
    assert result == {"updated": 1, "unread_count": 1}
    assert [n["id"] for n in _list(tdb, admin, status="unread").items] == [test_note["id"]]

    assert mark_read(MarkReadRequest(all=True), tdb=tdb, user=admin)["unread_count"] == 0


def test_create_requires_title_and_message(tdb, admin):
    with pytest.raises(HTTPException) as exc:
        create_user_notification(NotificationCreate(title="only title"), tdb=tdb, user=admin)
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        mark_read(MarkReadRequest(), tdb=tdb, user=admin)
    assert exc.value.status_code == 400


def test_listing_is_per_user_and_filters_category(db, tenant, tdb, admin):
    other = make_user(db, tenant, role="USER")
    create_notification(tdb, user_id=other.id, title="t", message="m", type="TEAM")
    create_notification(tdb, user_id=admin.id, title="b", message="m", type="BILLING")
    create_notification(tdb, user_id=admin.id, title="s", message="m", type="SECURITY")

    assert len(_list(tdb, admin).items) == 2
    billing = _list(tdb, admin, category="BILLING").items
    assert [n["title"] for n in billing] == ["b"]


def test_preferences_defaults_and_upsert(tdb, admin):
    defaults = get_preferences(tdb=tdb, user=admin)["preferences"]
    assert [p["category"] for p in defaults] == list(CATEGORIES)
    assert all(p["in_app_enabled"] and not p["email_enabled"] for p in defaults)

    saved = update_preferences(
        PreferencesUpdate(
            preferences=[PreferenceUpdate(category="Billing", email_enabled=True, quiet_hours_start="22:00")]
        ),
        tdb=tdb,
        user=admin,
    )["preferences"]
    assert saved[0]["category"] == "billing"
    assert saved[0]["email_enabled"] is True
    assert saved[0]["in_app_enabled"] is True

    update_preferences(
        PreferencesUpdate(preferences=[PreferenceUpdate(category="billing", frequency="DAILY_DIGEST")]),
        tdb=tdb,
        user=admin,
    )
    billing = next(p for p in get_preferences(tdb=tdb, user=admin)["preferences"] if p["category"] == "billing")
    assert billing["email_enabled"] is True
    assert billing["frequency"] == "DAILY_DIGEST"
    assert billing["quiet_hours_start"] == "22:00"


def test_unknown_preference_category_is_rejected(tdb, admin):
    with pytest.raises(HTTPException) as exc:
        update_preferences(
            PreferencesUpdate(preferences=[PreferenceUpdate(category="marketing")]), tdb=tdb, user=admin
        )
    assert exc.value.status_code == 400


def test_notify_admin_targets_first_active_admin(db, tenant, tdb, admin):
    make_user(db, tenant, role="USER")
    note = notify_admin(tdb, title="Usage", message="80% of your plan used", type="METRICS")
    assert note.user_id == admin.id


def test_notify_admin_without_admin_is_skipped(db):
    lonely = make_tenant(db, "lonely")
    assert notify_admin(create_tenant_db(db, lonely.id), title="x", message="y") is None
