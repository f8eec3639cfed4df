from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from warden.core.errors import AccessDeniedError


class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"


class Permission(str, Enum):
    VIEW_USERS = "view_users"
    CREATE_USERS = "create_users"
    EDIT_USERS = "edit_users"
    DELETE_USERS = "delete_users"

    VIEW_CONTENT = "view_content"
    CREATE_CONTENT = "create_content"
    EDIT_CONTENT = "edit_content"
    DELETE_CONTENT = "delete_content"

    VIEW_SETTINGS = "view_settings"
    EDIT_SETTINGS = "edit_settings"
    SYSTEM_CONFIG = "system_config"

    VIEW_ANALYTICS = "view_analytics"
    EXPORT_DATA = "export_data"

    VIEW_LOGS = "view_logs"
    SECURITY_CONFIG = "security_config"
    MANAGE_BACKUPS = "manage_backups"


ROLE_PERMISSIONS: Dict[AdminRole, FrozenSet[Permission]] = {
    AdminRole.SUPER_ADMIN: frozenset(Permission),
    AdminRole.ADMIN: frozenset(
        {
            Permission.VIEW_USERS,
            Permission.CREATE_USERS,
            Permission.EDIT_USERS,
            Permission.VIEW_CONTENT,
            Permission.CREATE_CONTENT,
            Permission.EDIT_CONTENT,
            Permission.DELETE_CONTENT,
            Permission.VIEW_SETTINGS,
            Permission.EDIT_SETTINGS,
            Permission.VIEW_ANALYTICS,
            Permission.EXPORT_DATA,
            Permission.VIEW_LOGS,
        }
    ),
    AdminRole.MODERATOR: frozenset(
        {
            Permission.VIEW_USERS,
            Permission.VIEW_CONTENT,
            Permission.CREATE_CONTENT,
            Permission.EDIT_CONTENT,
            Permission.VIEW_ANALYTICS,
        }
    ),
    AdminRole.USER: frozenset({Permission.VIEW_CONTENT, Permission.VIEW_ANALYTICS}),
}

_RANK: Dict[AdminRole, int] = {
    AdminRole.SUPER_ADMIN: 4,
    AdminRole.ADMIN: 3,
    AdminRole.MODERATOR: 2,
    AdminRole.USER: 1,
}


def _role(value: Union[AdminRole, str]) -> Optional[AdminRole]:
    try:
        return AdminRole(value)
    except ValueError:
        return None


def has_permission(role: Union[AdminRole, str], permission: Union[Permission, str]) -> bool:
    r = _role(role)
    if r is None:
        return False
    try:
        p = Permission(permission)
    except ValueError:
        return False
    return p in ROLE_PERMISSIONS.get(r, frozenset())


def can_manage_role(actor_role: Union[AdminRole, str], target_role: Union[AdminRole, str]) -> bool:
    """An actor may only manage roles strictly below its own."""
    a = _role(actor_role)
    t = _role(target_role)
    if a is None or t is None:
        return False
    return _RANK[a] > _RANK[t]


def require_permission(role: Union[AdminRole, str], permission: Union[Permission, str]) -> None:
    if not has_permission(role, permission):
        raise AccessDeniedError("Permission denied.", role=str(getattr(role, "value", role)), permission=str(getattr(permission, "value", permission)))
