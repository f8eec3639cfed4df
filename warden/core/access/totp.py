from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from typing import Callable, List, Optional

import pyotp
from pydantic import BaseModel, ConfigDict

from warden.core.access.models import TwoFactorConfig, TwoFactorEnrollment
from warden.core.audit.log import AuditLog
from warden.core.audit.models import SYSTEM_ACTOR, Actor, AuditAction
from warden.core.errors import NotFoundError, ValidationError
from warden.core.store import SecurityStore


class EnrollmentStart(BaseModel):
    """Handed to the admin once, when enrollment begins. Never stored in this form."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    identity: str
    secret: str
    provisioning_uri: str
    backup_codes: List[str]


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.strip().upper().encode("utf-8")).hexdigest()


class TwoFactorVerifier:
    """
    RFC 6238 time-based codes as a second login factor.

    Store namespaces:
    - second-factor: {identity: TwoFactorEnrollment}

    An enrollment starts disabled and is enabled by the first good code. Each
    time step is accepted once; backup codes are stored hashed and are single use.
    """

    def __init__(
        self,
        store: SecurityStore,
        audit: AuditLog,
        *,
        cfg: Optional[TwoFactorConfig] = None,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.audit = audit
        self.cfg = cfg or TwoFactorConfig()
        self.logger = logger or logging.getLogger("warden.access.totp")
        self._now = now or time.time

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=int(self.cfg.digits), interval=int(self.cfg.interval_seconds))

    def get_enrollment(self, identity: str) -> Optional[TwoFactorEnrollment]:
        raw = self.store.read("second-factor", default={}).get(_norm(identity))
        return TwoFactorEnrollment.model_validate(raw) if raw is not None else None

    def is_enabled(self, identity: str) -> bool:
        enrollment = self.get_enrollment(identity)
        return enrollment is not None and enrollment.enabled

    def enrolled_count(self) -> int:
        return sum(1 for v in self.store.read("second-factor", default={}).values() if v.get("enabled"))

    def code_at(self, secret: str, for_time: float) -> str:
        return self._totp(secret).generate_otp(int(for_time) // int(self.cfg.interval_seconds))

    # ---------- enrollment ----------
    def enroll(self, identity: str, *, actor: Actor = SYSTEM_ACTOR) -> EnrollmentStart:
        identity = _norm(identity)
        if not identity:
            raise ValidationError("Identity is required.", reasons=["identity must not be empty"])
        secret = pyotp.random_base32()
        codes = [secrets.token_hex(5).upper() for _ in range(int(self.cfg.backup_codes))]
        enrollment = TwoFactorEnrollment(
            identity=identity,
            secret=secret,
            enrolled_at=float(self._now()),
            backup_code_hashes=[_hash_code(c) for c in codes],
        )
        with self.store.locked("second-factor"):
            current = self.store.read("second-factor", default={})
            current[identity] = enrollment.model_dump()
            self.store.write("second-factor", current)
        self.audit.record(AuditAction.TOTP_ENROLLED, resource="two_factor", success=True, actor=actor, details={"identity": identity})
        return EnrollmentStart(
            identity=identity,
            secret=secret,
            provisioning_uri=self._totp(secret).provisioning_uri(name=identity, issuer_name=self.cfg.issuer),
            backup_codes=codes,
        )

    def confirm(self, identity: str, code: str, *, actor: Actor = SYSTEM_ACTOR) -> bool:
        identity = _norm(identity)
        if self.get_enrollment(identity) is None:
            raise NotFoundError("No two-factor enrollment for this identity.", identity=identity)
        if not self._check(identity, code, allow_backup=False, origin=None):
            return False
        with self.store.locked("second-factor"):
            current = self.store.read("second-factor", default={})
            current[identity]["enabled"] = True
            self.store.write("second-factor", current)
        self.audit.record(AuditAction.TOTP_ENABLED, resource="two_factor", success=True, actor=actor, details={"identity": identity})
        return True

    def disable(self, identity: str, *, actor: Actor = SYSTEM_ACTOR) -> bool:
        identity = _norm(identity)
        with self.store.locked("second-factor"):
            current = self.store.read("second-factor", default={})
            if current.pop(identity, None) is None:
                return False
            self.store.write("second-factor", current)
        self.audit.record(AuditAction.TOTP_DISABLED, resource="two_factor", success=True, actor=actor, details={"identity": identity})
        return True

    # ---------- verification ----------
    def verify(self, identity: str, code: Optional[str], *, origin: Optional[str] = None) -> bool:
        """Check a login code or an unused backup code for an enabled enrollment."""
        identity = _norm(identity)
        enrollment = self.get_enrollment(identity)
        if enrollment is None or not enrollment.enabled:
            raise NotFoundError("Two-factor authentication is not enabled for this identity.", identity=identity)
        return self._check(identity, code, allow_backup=True, origin=origin)

    def _check(self, identity: str, code: Optional[str], *, allow_backup: bool, origin: Optional[str]) -> bool:
        cleaned = str(code or "").replace(" ", "").strip()
        now = float(self._now())
        reason = "missing code" if not cleaned else "invalid code"
        with self.store.locked("second-factor"):
            current = self.store.read("second-factor", default={})
            raw = current.get(identity)
            if raw is None:
                raise NotFoundError("No two-factor enrollment for this identity.", identity=identity)
            enrollment = TwoFactorEnrollment.model_validate(raw)
            matched = None
            if cleaned.isdigit() and len(cleaned) == int(self.cfg.digits):
                matched = self._match_counter(enrollment, cleaned, now)
                if matched is not None and enrollment.last_counter is not None and matched <= enrollment.last_counter:
                    matched = None
                    reason = "code already used"
            if matched is not None:
                enrollment.last_counter = matched
            elif allow_backup and cleaned and _hash_code(cleaned) in enrollment.backup_code_hashes:
                enrollment.backup_code_hashes.remove(_hash_code(cleaned))
                self.logger.warning("Backup code used for %s; %d left", identity, len(enrollment.backup_code_hashes))
            else:
                enrollment = None
            if enrollment is not None:
                current[identity] = enrollment.model_dump()
                self.store.write("second-factor", current)
        if enrollment is not None:
            return True
        self.audit.record(
            AuditAction.TOTP_FAILED,
            resource="two_factor",
            success=False,
            actor=Actor(actor_id=identity, actor_email=identity if "@" in identity else ""),
            origin=origin,
            details={"reason": reason},
        )
        return False

    def _match_counter(self, enrollment: TwoFactorEnrollment, code: str, now: float) -> Optional[int]:
        totp = self._totp(enrollment.secret)
        base = int(now) // int(self.cfg.interval_seconds)
        window = int(self.cfg.valid_window)
        for counter in range(base - window, base + window + 1):
            if hmac.compare_digest(totp.generate_otp(counter), code):
                return counter
        return None


def _norm(identity: Optional[str]) -> str:
    return str(identity or "").strip().lower()
