import pytest
from fastapi import HTTPException

from app.auth.security import hash_password, verify_password
from app.notifications.models import Notification
from app.users.router import (
    change_password,
    create_member,
    list_team,
    reactivate_member,
    remove_member,
    suspend_member,
    team_stats,
    update_member,
    update_preferences,
)
from app.users.schemas import PasswordChange, PreferencesPatch, SuspendRequest, UserCreate, UserUpdate
from conftest import make_user


def test_create_member_notifies_and_enforces_limits(db, tdb, admin):
    member = create_member(
        UserCreate(email="New.Hire@Acme.io", password="password-123", role="BOT_OPERATOR"), tdb=tdb, user=admin
    )
    assert member.email == "new.hire@acme.io"
    assert member.role == "BOT_OPERATOR"
    assert db.query(Notification).filter_by(user_id=admin.id, type="TEAM").count() == 1

    # FREE allows two users
    with pytest.raises(HTTPException) as exc:
        create_member(UserCreate(email="third@acme.io", password="password-123"), tdb=tdb, user=admin)
    assert exc.value.status_code == 403


def test_create_member_duplicate_email_and_super_admin_grant(db, tenant, tdb, admin):
    tenant.plan = "STARTER"
    db.commit()
    with pytest.raises(HTTPException) as exc:
        create_member(UserCreate(email="ADMIN@acme.io", password="password-123"), tdb=tdb, user=admin)
    assert exc.value.status_code == 409

    with pytest.raises(HTTPException) as exc:
        create_member(UserCreate(email="x@acme.io", password="password-123", role="SUPER_ADMIN"), tdb=tdb, user=admin)
    assert exc.value.status_code == 403


def test_self_changes_are_refused(tdb, admin):
    for call in (
        lambda: update_member(admin.id, UserUpdate(role="USER"), tdb=tdb, user=admin),
        lambda: suspend_member(admin.id, SuspendRequest(), tdb=tdb, user=admin),
        lambda: remove_member(admin.id, tdb=tdb, user=admin),
    ):
        with pytest.raises(HTTPException) as exc:
            call()
        assert exc.value.status_code == 400


def test_last_active_admin_is_protected(db, tenant, tdb, admin):
    operator = make_user(db, tenant, role="SUPER_ADMIN")
    with pytest.raises(HTTPException) as exc:
        suspend_member(admin.id, SuspendRequest(reason="audit"), tdb=tdb, user=operator)
    assert exc.value.detail == "Cannot remove the last active admin"
    with pytest.raises(HTTPException):
        update_member(admin.id, UserUpdate(role="USER"), tdb=tdb, user=operator)

    second = make_user(db, tenant, role="TENANT_ADMIN")
    out = update_member(second.id, UserUpdate(role="USER"), tdb=tdb, user=admin)
    assert out.role == "USER"


def test_tenant_admin_cannot_touch_a_super_admin(db, tenant, tdb, admin):
    operator = make_user(db, tenant, role="SUPER_ADMIN")
    for call in (
        lambda: update_member(operator.id, UserUpdate(role="USER"), tdb=tdb, user=admin),
        lambda: suspend_member(operator.id, SuspendRequest(), tdb=tdb, user=admin),
        lambda: reactivate_member(operator.id, tdb=tdb, user=admin),
        lambda: remove_member(operator.id, tdb=tdb, user=admin),
    ):
        with pytest.raises(HTTPException) as exc:
            call()
        assert exc.value.status_code == 403

    db.refresh(operator)
    assert (operator.role, operator.status) == ("SUPER_ADMIN", "ACTIVE")


def test_suspend_and_reactivate_round_trip(db, tenant, tdb, admin):
    member = make_user(db, tenant, role="USER")
    suspended = suspend_member(member.id, SuspendRequest(reason="policy"), tdb=tdb, user=admin)
    assert suspended.status == "SUSPENDED"
    assert tdb.get_user(member.id).preferences["suspension_reason"] == "policy"

    active = reactivate_member(member.id, tdb=tdb, user=admin)
    assert active.status == "ACTIVE"
    assert "suspension_reason" not in tdb.get_user(member.id).preferences

    stats = team_stats(tdb=tdb, user=admin)
    assert stats["total"] == 2
    assert stats["by_role"]["USER"] == 1


def test_list_team_counts_conversations_and_remove(db, tenant, tdb, admin):
    member = make_user(db, tenant, role="USER")
    bot = tdb.create_bot(name="b")
    tdb.create_conversation(bot_id=bot.id, user_id=member.id)

    counts = {u.id: u.conversation_count for u in list_team(tdb=tdb, user=admin)}
    assert counts == {admin.id: 0, member.id: 1}

    assert remove_member(member.id, tdb=tdb, user=admin) == {"ok": True}
    with pytest.raises(HTTPException) as exc:
        remove_member(member.id, tdb=tdb, user=admin)
    assert exc.value.status_code == 404


def test_change_password_and_preferences(db, tenant, tdb):
    user = make_user(db, tenant, role="USER", password_hash=hash_password("old-password"))
    with pytest.raises(HTTPException) as exc:
        change_password(PasswordChange(current_password="wrong", new_password="new-password"), tdb=tdb, user=user)
    assert exc.value.status_code == 400

    assert change_password(
        PasswordChange(current_password="old-password", new_password="new-password"), tdb=tdb, user=user
    ) == {"ok": True}
    assert verify_password("new-password", tdb.get_user(user.id).password_hash)
    assert db.query(Notification).filter_by(user_id=user.id, type="SECURITY").count() == 1

    update_preferences(PreferencesPatch(preferences={"theme": "dark"}), tdb=tdb, user=user)
    prefs = update_preferences(PreferencesPatch(preferences={"language": "fr"}), tdb=tdb, user=user)["preferences"]
    assert prefs == {"theme": "dark", "language": "fr"}
