import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select

from app.auth.deps import get_current_user
from app.auth.models import User
from app.auth.permissions import ROLES, SUPER_ADMIN, TENANT_ADMIN, is_super_admin, require_permission
from app.auth.security import PasswordTooLongError, hash_password, verify_password
from app.billing.guards import ensure_paid_action, ensure_plan_allows
from app.db.tenant_db import TenantDB
from app.notifications.service import create_notification
from app.tenants.deps import get_tenant_db
from app.users.schemas import (
    PasswordChange,
    PreferencesPatch,
    ProfileUpdate,
    SuspendRequest,
    UserCreate,
    UserOut,
    UserUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _out(user: User, conversation_count: int = 0) -> UserOut:
    out = UserOut.model_validate(user)
    out.conversation_count = conversation_count
    return out


def _member_or_404(tdb: TenantDB, user_id: str) -> User:
    member = tdb.get_user(user_id)
    if not member:
        raise HTTPException(status_code=404, detail="User not found")
    return member


def _active_admin_count(tdb: TenantDB) -> int:
    return sum(1 for u in tdb.list_users() if u.role == TENANT_ADMIN and u.status == "ACTIVE")


def _guard_admin_removal(tdb: TenantDB, member: User, *, new_role: str | None = None, new_status: str | None = None):
    losing_admin = member.role == TENANT_ADMIN and member.status == "ACTIVE" and (
        (new_role is not None and new_role != TENANT_ADMIN) or (new_status is not None and new_status != "ACTIVE")
    )
    if losing_admin and _active_admin_count(tdb) <= 1:
        raise HTTPException(status_code=400, detail="Cannot remove the last active admin")


def _guard_super_admin_member(member: User, user: User) -> None:
    if member.role == SUPER_ADMIN and not is_super_admin(user.role):
        raise HTTPException(status_code=403, detail="Only a SUPER_ADMIN can manage a SUPER_ADMIN")


# -- self service ---------------------------------------------------------


@router.get("/me", response_model=UserOut)
def get_profile(user: User = Depends(get_current_user)):
    return _out(user)


@router.patch("/me", response_model=UserOut)
def update_profile(
    payload: ProfileUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    return _out(tdb.update_user(user.id, **payload.model_dump(exclude_unset=True)))


@router.put("/me/password")
def change_password(
    payload: PasswordChange,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    try:
        new_hash = hash_password(payload.new_password)
    except PasswordTooLongError as e:
        raise HTTPException(status_code=422, detail=str(e))
    tdb.update_user(user.id, password_hash=new_hash)
    create_notification(
        tdb,
        user_id=user.id,
        title="Password changed",
        message="Your password was changed. If this wasn't you, contact your administrator.",
        type="SECURITY",
        priority="HIGH",
    )
    return {"ok": True}


@router.get("/preferences")
def get_preferences(user: User = Depends(get_current_user)):
    return {"preferences": user.preferences or {}}


@router.put("/preferences")
def update_preferences(
    payload: PreferencesPatch,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    merged = {**(user.preferences or {}), **payload.preferences}
    return {"preferences": tdb.update_user(user.id, preferences=merged).preferences}


# -- team management ------------------------------------------------------


@router.get("/stats")
def team_stats(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    members = tdb.list_users()
    by_role = {role: 0 for role in ROLES}
    by_status = {"ACTIVE": 0, "INACTIVE": 0, "SUSPENDED": 0}
    for m in members:
        by_role[m.role] = by_role.get(m.role, 0) + 1
        by_status[m.status] = by_status.get(m.status, 0) + 1
    return {"total": len(members), "active": by_status["ACTIVE"], "by_role": by_role, "by_status": by_status}


@router.get("", response_model=list[UserOut])
def list_team(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    counts = tdb.user_conversation_counts()
    return [_out(m, counts.get(m.id, 0)) for m in tdb.list_users()]


@router.post("", response_model=UserOut, status_code=201)
def create_member(
    payload: UserCreate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    if payload.role == SUPER_ADMIN and not is_super_admin(user.role):
        raise HTTPException(status_code=403, detail="Cannot grant SUPER_ADMIN")
    _guard_super_admin_member(member, user)
    ensure_paid_action(tdb.db, tdb.tenant_id)
    ensure_plan_allows(tdb.db, tdb.tenant_id, "users")

    email = str(payload.email).lower()
    if tdb.db.execute(select(User.id).where(User.email == email)).first() is not None:
        raise HTTPException(status_code=409, detail="User with this email already exists")
    try:
        pw_hash = hash_password(payload.password)
    except PasswordTooLongError as e:
        raise HTTPException(status_code=422, detail=str(e))

    member = tdb.create_user(email=email, password_hash=pw_hash, role=payload.role, name=payload.name)
    logger.info("Team member added tenant=%s user=%s role=%s by=%s", tdb.tenant_id, member.id, member.role, user.id)
    create_notification(
        tdb,
        user_id=user.id,
        title="Team member added",
        message=f"{member.email} joined your team as {member.role}.",
        type="TEAM",
        priority="LOW",
        metadata={"member_id": member.id},
    )
    return _out(member)


@router.get("/{user_id}", response_model=UserOut)
def get_member(
    user_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    member = _member_or_404(tdb, user_id)
    return _out(member, tdb.user_conversation_counts().get(member.id, 0))


@router.patch("/{user_id}", response_model=UserOut)
def update_member(
    user_id: str,
    payload: UserUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    member = _member_or_404(tdb, user_id)
    fields = payload.model_dump(exclude_unset=True)
    if member.id == user.id and ("role" in fields or "status" in fields):
        raise HTTPException(status_code=400, detail="You cannot change your own role or status")
    if fields.get("role") == SUPER_ADMIN and not is_super_admin(user.role):
        raise HTTPException(status_code=403, detail="Cannot grant SUPER_ADMIN")
    _guard_admin_removal(tdb, member, new_role=fields.get("role"), new_status=fields.get("status"))
    return _out(tdb.update_user(member.id, **fields))


@router.post("/{user_id}/suspend", response_model=UserOut)
def suspend_member(
    user_id: str,
    payload: SuspendRequest,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    member = _member_or_404(tdb, user_id)
    if member.id == user.id:
        raise HTTPException(status_code=400, detail="You cannot suspend yourself")
    _guard_super_admin_member(member, user)
    _guard_admin_removal(tdb, member, new_status="SUSPENDED")
    prefs = {**(member.preferences or {}), "suspension_reason": payload.reason}
    logger.info("User suspended tenant=%s user=%s by=%s", tdb.tenant_id, member.id, user.id)
    return _out(tdb.update_user(member.id, status="SUSPENDED", preferences=prefs))


@router.post("/{user_id}/reactivate", response_model=UserOut)
def reactivate_member(
    user_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    member = _member_or_404(tdb, user_id)
    _guard_super_admin_member(member, user)
    prefs = {k: v for k, v in (member.preferences or {}).items() if k != "suspension_reason"}
    return _out(tdb.update_user(member.id, status="ACTIVE", preferences=prefs))


@router.delete("/{user_id}")
def remove_member(
    user_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    member = _member_or_404(tdb, user_id)
    if member.id == user.id:
        raise HTTPException(status_code=400, detail="You cannot remove yourself")
    _guard_super_admin_member(member, user)
    _guard_admin_removal(tdb, member, new_status="INACTIVE")
    tdb.delete_user(member.id)
    logger.info("User removed tenant=%s user=%s by=%s", tdb.tenant_id, user_id, user.id)
    return {"ok": True}
