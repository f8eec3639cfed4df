from __future__ import annotations

from warden.core.access.gate import AccessGate
from warden.core.access.models import (
    AccessPolicy,
    AttemptDecision,
    AttemptOutcome,
    AttemptRecord,
    LockoutConfig,
    TwoFactorConfig,
    TwoFactorEnrollment,
)
from warden.core.access.roles import AdminRole, Permission, can_manage_role, has_permission, require_permission
from warden.core.access.totp import EnrollmentStart, TwoFactorVerifier

__all__ = [
    "AccessGate",
    "AccessPolicy",
    "AttemptDecision",
    "AttemptOutcome",
    "AttemptRecord",
    "LockoutConfig",
    "TwoFactorConfig",
    "TwoFactorEnrollment",
    "EnrollmentStart",
    "TwoFactorVerifier",
    "AdminRole",
    "Permission",
    "can_manage_role",
    "has_permission",
    "require_permission",
]
