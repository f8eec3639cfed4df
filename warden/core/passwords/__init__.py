from __future__ import annotations

from warden.core.passwords.engine import COMMON_PASSWORDS, CredentialPolicyEngine, hash_password, verify_password
from warden.core.passwords.models import PasswordPolicy, PasswordStrength, PasswordValidationResult, UserInfo

__all__ = [
    "COMMON_PASSWORDS",
    "CredentialPolicyEngine",
    "hash_password",
    "verify_password",
    "PasswordPolicy",
    "PasswordStrength",
    "PasswordValidationResult",
    "UserInfo",
]
