"""Static role -> permission allow-list."""
from fastapi import Depends, HTTPException

from app.auth.deps import get_current_user
from app.auth.models import User

SUPER_ADMIN = "SUPER_ADMIN"
TENANT_ADMIN = "TENANT_ADMIN"
BOT_OPERATOR = "BOT_OPERATOR"
USER = "USER"

ROLES = (SUPER_ADMIN, TENANT_ADMIN, BOT_OPERATOR, USER)

ALL_PERMISSIONS = frozenset(
    {
        "bot:create",
        "bot:read",
        "bot:update",
        "bot:delete",
        "knowledge:create",
        "knowledge:read",
        "knowledge:update",
        "knowledge:delete",
        "user:manage",
        "analytics:view",
        "widget:manage",
        "api:manage",
    }
)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    SUPER_ADMIN: ALL_PERMISSIONS,
    TENANT_ADMIN: ALL_PERMISSIONS,
    BOT_OPERATOR: frozenset(
        {"bot:read", "bot:update", "knowledge:read", "knowledge:update", "analytics:view"}
    ),
    USER: frozenset({"bot:read", "knowledge:read", "analytics:view"}),
}


def permissions_for(role: str | None) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(role: str | None, permission: str) -> bool:
    return permission in permissions_for(role)


def has_any_permission(role: str | None, permissions) -> bool:
    granted = permissions_for(role)
    return any(p in granted for p in permissions)


def has_all_permissions(role: str | None, permissions) -> bool:
    granted = permissions_for(role)
    return all(p in granted for p in permissions)


def is_admin(role: str | None) -> bool:
    return role in (SUPER_ADMIN, TENANT_ADMIN)


def is_super_admin(role: str | None) -> bool:
    return role == SUPER_ADMIN


def can_manage_users(role: str | None) -> bool:
    return has_permission(role, "user:manage")


def can_manage_bots(role: str | None) -> bool:
    return has_any_permission(role, ("bot:create", "bot:update", "bot:delete"))


def can_manage_knowledge(role: str | None) -> bool:
    return has_any_permission(role, ("knowledge:create", "knowledge:update", "knowledge:delete"))


def validate_user_access(user: User, tenant_id: str) -> bool:
    return user.tenant_id == tenant_id and user.status == "ACTIVE"


def require_permission(permission: str):
    def _dep(user: User = Depends(get_current_user)) -> User:
        if not has_permission(user.role, permission):
            raise HTTPException(status_code=403, detail=f"Missing required permission: {permission}")
        return user

    return _dep


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user.role):
        raise HTTPException(status_code=403, detail="Admin role required")
    return user
