from __future__ import annotations

import logging
import re
import secrets
from typing import Any, Dict, List, Optional, Union

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import ValidationError as PydanticValidationError

from warden.core.audit.log import AuditLog
from warden.core.audit.models import SYSTEM_ACTOR, Actor, AuditAction
from warden.core.errors import ValidationError
from warden.core.passwords.models import PasswordPolicy, PasswordStrength, PasswordValidationResult, UserInfo
from warden.core.store import SecurityStore


LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DIGITS = "0123456789"
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"\d")
_SPECIAL = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

COMMON_PASSWORDS = frozenset(
    {
        "password", "123456", "123456789", "12345678", "qwerty", "abc123", "password123",
        "password1", "admin", "admin123", "administrator", "letmein", "welcome", "monkey",
        "dragon", "master", "hello", "freedom", "whatever", "qazwsx", "trustno1", "jordan",
        "harley", "hunter", "buster", "thomas", "tigger", "robert", "soccer", "batman",
        "test", "pass", "love", "shadow", "angel", "princess", "jennifer", "joshua",
        "michael", "andrew", "access", "root", "toor", "demo", "guest", "info", "adm",
        "mysql", "user",
    }
)

# Rule weights; the total is capped at 100.
W_MIN_LENGTH = 20
W_CLASS = 15
W_NOT_COMMON = 10
W_NOT_USER_INFO = 10
B_LENGTH_12 = 10
B_LENGTH_16 = 5
B_ALL_CLASSES = 10

_GENERATE_MAX_TRIES = 64


def _band(score: int) -> PasswordStrength:
    if score < 40:
        return PasswordStrength.weak
    if score < 60:
        return PasswordStrength.medium
    if score < 80:
        return PasswordStrength.strong
    return PasswordStrength.very_strong


def _scrypt(password: str, salt: bytes, n: int = 2**14, r: int = 8, p: int = 1) -> bytes:
    kdf = Scrypt(salt=salt, length=32, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


def hash_password(password: str) -> Dict[str, Any]:
    if not isinstance(password, str) or not password:
        raise ValueError("Password must be a non-empty string")
    salt = secrets.token_bytes(16)
    digest = _scrypt(password, salt)
    return {"salt": salt.hex(), "digest": digest.hex(), "kdf": {"name": "scrypt", "n": 2**14, "r": 8, "p": 1}}


def verify_password(password: str, payload: Optional[Dict[str, Any]]) -> bool:
    if not password or not payload:
        return False
    try:
        salt = bytes.fromhex(payload["salt"])
        expected = bytes.fromhex(payload["digest"])
        kdf = payload.get("kdf") or {}
        digest = _scrypt(password, salt, n=int(kdf.get("n", 2**14)), r=int(kdf.get("r", 8)), p=int(kdf.get("p", 1)))
    except (KeyError, ValueError, TypeError):
        return False
    return secrets.compare_digest(digest, expected)


class CredentialPolicyEngine:
    """
    Password rules, scoring and generation.

    Store namespace:
    - password-policy: PasswordPolicy (singleton, changed only through update_policy/reset_policy)
    """

    def __init__(
        self,
        store: SecurityStore,
        *,
        audit: Optional[AuditLog] = None,
        default_policy: Optional[PasswordPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.audit = audit
        self.default_policy = default_policy or PasswordPolicy()
        self.logger = logger or logging.getLogger("warden.passwords")
        with self.store.locked("password-policy"):
            if self.store.read("password-policy") is None:
                self.store.write("password-policy", self.default_policy.model_dump())

    # ---------- policy ----------
    def get_policy(self) -> PasswordPolicy:
        return PasswordPolicy.model_validate(self.store.read("password-policy", default=self.default_policy.model_dump()))

    def update_policy(self, *, actor: Actor = SYSTEM_ACTOR, **changes: Any) -> PasswordPolicy:
        with self.store.locked("password-policy"):
            merged = self.get_policy().model_dump()
            merged.update(changes)
            try:
                policy = PasswordPolicy.model_validate(merged)
            except PydanticValidationError as e:
                raise ValidationError("Invalid password policy.", reasons=[err["msg"] for err in e.errors()]) from e
            self.store.write("password-policy", policy.model_dump())
        self._audit_policy_change(actor, sorted(changes.keys()))
        return policy

    def reset_policy(self, *, actor: Actor = SYSTEM_ACTOR) -> PasswordPolicy:
        with self.store.locked("password-policy"):
            self.store.write("password-policy", self.default_policy.model_dump())
        self._audit_policy_change(actor, ["reset"])
        return self.default_policy.model_copy()

    def requirements(self, policy: Optional[PasswordPolicy] = None) -> List[str]:
        p = policy or self.get_policy()
        reqs = [f"At least {p.min_length} characters", f"At most {p.max_length} characters"]
        if p.require_uppercase:
            reqs.append("One uppercase letter (A-Z)")
        if p.require_lowercase:
            reqs.append("One lowercase letter (a-z)")
        if p.require_numbers:
            reqs.append("One number (0-9)")
        if p.require_special_chars:
            reqs.append("One special character (!@#$%^&*)")
        if p.prevent_common_passwords:
            reqs.append("Not a common password")
        if p.prevent_user_info:
            reqs.append("Does not contain personal information")
        return reqs

    # ---------- validation ----------
    def validate(
        self,
        password: str,
        policy: Optional[PasswordPolicy] = None,
        user_info: Optional[Union[UserInfo, Dict[str, Any]]] = None,
    ) -> PasswordValidationResult:
        p = policy or self.get_policy()
        if not isinstance(password, str):
            return PasswordValidationResult(is_valid=False, errors=["Password must be a string"], strength=PasswordStrength.weak, score=0)
        info = user_info if isinstance(user_info, UserInfo) or user_info is None else UserInfo.model_validate(user_info)

        errors: List[str] = []
        score = 0
        length = len(password)

        if length < p.min_length:
            errors.append(f"Password must be at least {p.min_length} characters long")
        else:
            score += W_MIN_LENGTH
        if length > p.max_length:
            errors.append(f"Password must be no more than {p.max_length} characters long")

        has_upper = bool(_UPPER.search(password))
        has_lower = bool(_LOWER.search(password))
        has_digit = bool(_DIGIT.search(password))
        has_special = bool(_SPECIAL.search(password))

        for present, required, message in (
            (has_upper, p.require_uppercase, "Password must contain at least one uppercase letter"),
            (has_lower, p.require_lowercase, "Password must contain at least one lowercase letter"),
            (has_digit, p.require_numbers, "Password must contain at least one number"),
            (has_special, p.require_special_chars, "Password must contain at least one special character"),
        ):
            if present:
                score += W_CLASS
            elif required:
                errors.append(message)

        if p.prevent_common_passwords and password.lower() in COMMON_PASSWORDS:
            errors.append("Password is too common. Please choose a more unique password")
        else:
            score += W_NOT_COMMON

        if p.prevent_user_info and info is not None:
            lowered = password.lower()
            if any(frag in lowered for frag in info.fragments()):
                errors.append("Password should not contain your personal information")
            else:
                score += W_NOT_USER_INFO

        if length >= 12:
            score += B_LENGTH_12
        if length >= 16:
            score += B_LENGTH_16
        if has_upper and has_lower and has_digit and has_special:
            score += B_ALL_CLASSES

        score = min(score, 100)
        return PasswordValidationResult(is_valid=not errors, errors=errors, strength=_band(score), score=score)

    def strength(self, password: str) -> Dict[str, Any]:
        res = self.validate(password)
        return {"strength": res.strength.value, "score": res.score}

    def require_valid(
        self,
        password: str,
        policy: Optional[PasswordPolicy] = None,
        user_info: Optional[Union[UserInfo, Dict[str, Any]]] = None,
    ) -> PasswordValidationResult:
        res = self.validate(password, policy, user_info)
        if not res.is_valid:
            raise ValidationError("Password does not meet the password policy.", reasons=res.errors)
        return res

    # ---------- generation ----------
    def generate_password(
        self,
        length: int,
        policy: Optional[PasswordPolicy] = None,
        user_info: Optional[Union[UserInfo, Dict[str, Any]]] = None,
    ) -> str:
        p = policy or self.get_policy()
        length = int(length)
        if length < p.min_length or length > p.max_length:
            raise ValueError(f"Password length must be between {p.min_length} and {p.max_length}.")

        required: List[str] = []
        if p.require_lowercase:
            required.append(LOWERCASE)
        if p.require_uppercase:
            required.append(UPPERCASE)
        if p.require_numbers:
            required.append(DIGITS)
        if p.require_special_chars:
            required.append(SYMBOLS)
        alphabet = LOWERCASE + UPPERCASE + DIGITS + SYMBOLS
        rng = secrets.SystemRandom()

        for _ in range(_GENERATE_MAX_TRIES):
            chars = [secrets.choice(cls) for cls in required]
            chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
            rng.shuffle(chars)
            candidate = "".join(chars)
            if self.validate(candidate, p, user_info).is_valid:
                return candidate
        raise RuntimeError("Could not generate a password that satisfies the policy.")

    # ---- internals ----
    def _audit_policy_change(self, actor: Actor, changed: List[str]) -> None:
        self.logger.info("Password policy updated by %s: %s", actor.actor_id, ", ".join(changed))
        if self.audit is not None:
            self.audit.record(
                AuditAction.PASSWORD_POLICY_UPDATED,
                resource="password_policy",
                success=True,
                actor=actor,
                details={"changed": changed},
            )
