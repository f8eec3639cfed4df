from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from warden.core.access.models import AccessPolicy, AttemptDecision, AttemptOutcome, AttemptRecord, LockoutConfig
from warden.core.audit.log import AuditLog
from warden.core.audit.models import SYSTEM_ACTOR, Actor, AuditAction, SecurityEventDraft
from warden.core.errors import AccessDeniedError, NotFoundError, ValidationError
from warden.core.store import SecurityStore


class AccessGate:
    """
    Origin allow-list plus per-identity brute-force lockout.

    Store namespaces:
    - access-policy: AccessPolicy
    - attempts: {identity: AttemptRecord}
    - lockouts: [identity...]
    - origin-failures: {ip: [failure timestamps...]}, only with origin_max_failures > 0

    Attempt state is mutated under the attempts/lockouts locks; audit events are
    appended after those locks are released.
    """

    def __init__(
        self,
        store: SecurityStore,
        audit: AuditLog,
        *,
        cfg: Optional[LockoutConfig] = None,
        default_policy: Optional[AccessPolicy] = None,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.audit = audit
        self.cfg = cfg or LockoutConfig()
        self.logger = logger or logging.getLogger("warden.access")
        self._now = now or time.time
        with self.store.locked("access-policy"):
            if self.store.read("access-policy") is None:
                self.store.write("access-policy", (default_policy or AccessPolicy()).model_dump())

    @property
    def attempt_window_seconds(self) -> float:
        return float(self.cfg.attempt_window_minutes) * 60.0

    @property
    def lockout_seconds(self) -> float:
        return float(self.cfg.lockout_minutes) * 60.0

    # ---------- origin ----------
    def get_access_policy(self) -> AccessPolicy:
        return AccessPolicy.model_validate(self.store.read("access-policy", default={}))

    def validate_origin(self, ip: str, *, resource: str = "admin_panel") -> bool:
        if self.get_access_policy().allows(ip):
            return True
        self.audit.record(
            AuditAction.IP_ACCESS_DENIED,
            resource=resource,
            success=False,
            origin=ip,
            details={"reason": "IP address not in allow-list"},
        )
        return False

    def require_origin(self, ip: str, *, resource: str = "admin_panel") -> None:
        if not self.validate_origin(ip, resource=resource):
            raise AccessDeniedError("Access from this network origin is not allowed.", origin=ip)

    def origin_failures(self, ip: Optional[str]) -> int:
        """Failed logins from `ip` inside the attempt window."""
        ip = str(ip or "").strip()
        if not ip:
            return 0
        cutoff = float(self._now()) - self.attempt_window_seconds
        return sum(1 for t in self.store.read("origin-failures", default={}).get(ip, []) if float(t) > cutoff)

    def is_origin_blocked(self, ip: Optional[str]) -> bool:
        limit = int(self.cfg.origin_max_failures)
        return limit > 0 and self.origin_failures(ip) >= limit

    def require_origin_unblocked(self, ip: Optional[str], *, resource: str = "admin_login") -> None:
        if not self.is_origin_blocked(ip):
            return
        self.audit.record(
            AuditAction.ORIGIN_BLOCKED,
            resource=resource,
            success=False,
            origin=ip,
            details={"failures": self.origin_failures(ip), "reason": "Too many failed logins from this origin"},
        )
        raise AccessDeniedError("Too many failed logins from this network origin.", origin=ip)

    def update_access_policy(self, *, actor: Actor = SYSTEM_ACTOR, **changes: Any) -> AccessPolicy:
        with self.store.locked("access-policy"):
            current = self.get_access_policy().model_dump()
            current.update(changes)
            try:
                policy = AccessPolicy.model_validate(current)
            except PydanticValidationError as e:
                raise ValidationError("Invalid access policy.", reasons=[err["msg"] for err in e.errors()]) from e
            self.store.write("access-policy", policy.model_dump())
        self.audit.record(
            AuditAction.ACCESS_POLICY_UPDATED,
            resource="access_policy",
            success=True,
            actor=actor,
            details={"changed": sorted(changes.keys())},
        )
        return policy

    # ---------- attempts ----------
    def record_attempt(self, identity: str, ip: Optional[str], outcome: Union[AttemptOutcome, str, bool]) -> AttemptDecision:
        identity = str(identity or "").strip().lower()
        if not identity:
            raise ValidationError("Identity is required.", reasons=["identity must not be empty"])
        if isinstance(outcome, bool):
            outcome = AttemptOutcome.success if outcome else AttemptOutcome.failure
        outcome = AttemptOutcome(outcome)
        success = outcome is AttemptOutcome.success
        now = float(self._now())
        pending: List[SecurityEventDraft] = []

        with self.store.locked("attempts", "lockouts"):
            attempts: Dict[str, Any] = self.store.read("attempts", default={})
            locked: Set[str] = set(self.store.read("lockouts", default=[]))
            raw = attempts.get(identity)

            if raw is None:
                rec = AttemptRecord(identity=identity, fail_count=0 if success else 1, last_attempt_at=now)
                decision = AttemptDecision(identity=identity, allowed=True, fail_count=rec.fail_count)
                pending.append(self._draft(identity, ip, AuditAction.LOGIN_SUCCESS if success else AuditAction.LOGIN_FAILURE, success, {"fail_count": rec.fail_count}))
            else:
                rec = AttemptRecord.model_validate(raw)
                decision = None
                if identity in locked:
                    lockout_end = rec.last_attempt_at + self.lockout_seconds
                    if now < lockout_end:
                        decision = AttemptDecision(identity=identity, allowed=False, fail_count=rec.fail_count, locked_until=lockout_end)
                        pending.append(
                            self._draft(identity, ip, AuditAction.LOGIN_ATTEMPT_LOCKED, False, {"locked_until": lockout_end, "outcome": outcome.value})
                        )
                    else:
                        locked.discard(identity)
                        rec.fail_count = 0

                if decision is None and success:
                    rec.fail_count = 0
                    rec.last_attempt_at = now
                    decision = AttemptDecision(identity=identity, allowed=True, fail_count=0)
                    pending.append(self._draft(identity, ip, AuditAction.LOGIN_SUCCESS, True, None))
                elif decision is None:
                    if now - rec.last_attempt_at < self.attempt_window_seconds:
                        rec.fail_count += 1
                    else:
                        rec.fail_count = 1
                    rec.last_attempt_at = now
                    if rec.fail_count >= int(self.cfg.max_attempts):
                        locked.add(identity)
                        until = now + self.lockout_seconds
                        decision = AttemptDecision(identity=identity, allowed=False, fail_count=rec.fail_count, locked_until=until)
                        pending.append(
                            self._draft(
                                identity,
                                ip,
                                AuditAction.ACCOUNT_LOCKED,
                                False,
                                {"fail_count": rec.fail_count, "locked_until": until, "reason": f"Account locked due to {rec.fail_count} failed login attempts"},
                            )
                        )
                    else:
                        decision = AttemptDecision(identity=identity, allowed=True, fail_count=rec.fail_count)
                        pending.append(self._draft(identity, ip, AuditAction.LOGIN_FAILURE, False, {"fail_count": rec.fail_count}))

            attempts[identity] = rec.model_dump()
            self.store.write("attempts", attempts)
            self.store.write("lockouts", sorted(locked))
            if not success and ip and int(self.cfg.origin_max_failures) > 0:
                self._note_origin_failure(str(ip).strip(), now)

        for draft in pending:
            self.audit.append(draft)
        if decision.locked:
            self.logger.warning("Login blocked for %s until %s", identity, decision.locked_until)
        return decision

    def get_record(self, identity: str) -> Optional[AttemptRecord]:
        raw = self.store.read("attempts", default={}).get(str(identity or "").strip().lower())
        return AttemptRecord.model_validate(raw) if raw is not None else None

    def is_locked(self, identity: str) -> bool:
        identity = str(identity or "").strip().lower()
        with self.store.locked("attempts", "lockouts"):
            if identity not in set(self.store.read("lockouts", default=[])):
                return False
            rec = self.get_record(identity)
            return rec is not None and float(self._now()) < rec.last_attempt_at + self.lockout_seconds

    def locked_identities(self) -> Dict[str, float]:
        """Currently locked identities mapped to their lockout expiry."""
        now = float(self._now())
        out: Dict[str, float] = {}
        with self.store.locked("attempts", "lockouts"):
            attempts = self.store.read("attempts", default={})
            for identity in self.store.read("lockouts", default=[]):
                raw = attempts.get(identity)
                if raw is None:
                    continue
                until = float(raw["last_attempt_at"]) + self.lockout_seconds
                if now < until:
                    out[identity] = until
        return out

    def unlock(self, identity: str, *, actor: Actor = SYSTEM_ACTOR) -> bool:
        identity = str(identity or "").strip().lower()
        with self.store.locked("attempts", "lockouts"):
            locked = set(self.store.read("lockouts", default=[]))
            attempts = self.store.read("attempts", default={})
            if identity not in attempts:
                raise NotFoundError("No login attempts recorded for this identity.", identity=identity)
            was_locked = identity in locked
            locked.discard(identity)
            attempts[identity]["fail_count"] = 0
            self.store.write("attempts", attempts)
            self.store.write("lockouts", sorted(locked))
        self.audit.record(
            AuditAction.ACCOUNT_UNLOCKED,
            resource="admin_login",
            success=True,
            actor=actor,
            details={"identity": identity, "was_locked": was_locked},
        )
        return was_locked

    def prune_attempts(self, *, older_than_seconds: float) -> int:
        """Drop unlocked records whose last attempt is older than the cutoff."""
        cutoff = float(self._now()) - float(older_than_seconds)
        with self.store.locked("attempts", "lockouts"):
            locked = set(self.store.read("lockouts", default=[]))
            attempts = self.store.read("attempts", default={})
            stale = [k for k, v in attempts.items() if k not in locked and float(v["last_attempt_at"]) < cutoff]
            for k in stale:
                del attempts[k]
            if stale:
                self.store.write("attempts", attempts)
        return len(stale)

    def status(self) -> Dict[str, Any]:
        policy = self.get_access_policy()
        return {
            "tracked_identities": len(self.store.read("attempts", default={})),
            "locked_accounts": len(self.locked_identities()),
            "origin_restriction_enabled": policy.enabled,
            "whitelist_mode": policy.whitelist_mode,
            "thresholds": {
                "max_attempts": int(self.cfg.max_attempts),
                "origin_max_failures": int(self.cfg.origin_max_failures),
                "attempt_window_minutes": float(self.cfg.attempt_window_minutes),
                "lockout_minutes": float(self.cfg.lockout_minutes),
            },
        }

    # ---- internals ----
    def _note_origin_failure(self, ip: str, now: float) -> None:
        cutoff = now - self.attempt_window_seconds
        with self.store.locked("origin-failures"):
            failures: Dict[str, List[float]] = self.store.read("origin-failures", default={})
            kept = {k: [t for t in v if float(t) > cutoff] for k, v in failures.items()}
            kept[ip] = kept.get(ip, []) + [now]
            self.store.write("origin-failures", {k: v for k, v in kept.items() if v})

    @staticmethod
    def _draft(identity: str, ip: Optional[str], action: AuditAction, success: bool, details: Optional[Dict[str, Any]]) -> SecurityEventDraft:
        return SecurityEventDraft(
            actor_id=identity,
            actor_email=identity if "@" in identity else "",
            action=action,
            resource="admin_login",
            origin=ip,
            success=success,
            details=details,
        )
