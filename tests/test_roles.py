from __future__ import annotations

import pytest

from warden.core.access.roles import AdminRole, Permission, can_manage_role, has_permission, require_permission
from warden.core.errors import AccessDeniedError


def test_super_admin_has_everything():
    assert all(has_permission(AdminRole.SUPER_ADMIN, p) for p in Permission)


def test_role_permissions():
    assert has_permission("admin", Permission.VIEW_LOGS)
    assert not has_permission("admin", Permission.SECURITY_CONFIG)
    assert not has_permission(AdminRole.MODERATOR, Permission.DELETE_USERS)
    assert has_permission(AdminRole.USER, "view_content")
    assert not has_permission("root", Permission.VIEW_CONTENT)
    assert not has_permission(AdminRole.ADMIN, "fly")


def test_manage_roles_strictly_below():
    assert can_manage_role(AdminRole.SUPER_ADMIN, AdminRole.ADMIN)
    assert can_manage_role("admin", "moderator")
    assert not can_manage_role(AdminRole.ADMIN, AdminRole.ADMIN)
    assert not can_manage_role(AdminRole.MODERATOR, AdminRole.ADMIN)
    assert not can_manage_role("ghost", AdminRole.USER)


def test_require_permission():
    require_permission(AdminRole.SUPER_ADMIN, Permission.MANAGE_BACKUPS)
    with pytest.raises(AccessDeniedError) as ei:
        require_permission(AdminRole.MODERATOR, Permission.MANAGE_BACKUPS)
    assert ei.value.context["permission"] == "manage_backups"
