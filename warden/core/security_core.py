from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, Optional, Union

from warden.core.access.gate import AccessGate
from warden.core.access.models import AttemptDecision, AttemptOutcome
from warden.core.access.roles import AdminRole, Permission, require_permission
from warden.core.access.totp import TwoFactorVerifier
from warden.core.audit.log import AuditLog
from warden.core.audit.models import Actor, AuditAction
from warden.core.backup.collector import UserDirectory
from warden.core.backup.scheduler import AutoBackupScheduler
from warden.core.backup.transforms import AesGcmCipher, Cipher, load_or_create_key
from warden.core.backup.vault import StateVault
from warden.core.config.models import WardenConfig
from warden.core.errors import AccessDeniedError
from warden.core.passwords.engine import CredentialPolicyEngine
from warden.core.session import SessionValidator, resolve_session_secret
from warden.core.store import JsonDirBackend, MemoryBackend, SecurityStore


class SecurityCore:
    """
    Builds the store and every component from one WardenConfig.

    Hosts hold a single instance for the process; tests build one per case
    over a MemoryBackend and a fake clock.
    """

    def __init__(
        self,
        cfg: WardenConfig,
        *,
        users: Optional[UserDirectory] = None,
        store: Optional[SecurityStore] = None,
        cipher: Optional[Cipher] = None,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ):
        self.cfg = cfg
        self.logger = logger or logging.getLogger("warden")
        self._now = now or time.time

        if store is None:
            backend = JsonDirBackend(cfg.storage.state_dir) if cfg.storage.state_dir else MemoryBackend()
            store = SecurityStore(backend)
        self.store = store

        self.audit = AuditLog(self.store, capacity=cfg.audit.capacity, logger=self.logger.getChild("audit"), now=self._now)
        self.gate = AccessGate(
            self.store,
            self.audit,
            cfg=cfg.access.lockout,
            default_policy=cfg.access.policy,
            logger=self.logger.getChild("access"),
            now=self._now,
        )
        self.two_factor = TwoFactorVerifier(
            self.store,
            self.audit,
            cfg=cfg.access.two_factor,
            logger=self.logger.getChild("access.totp"),
            now=self._now,
        )
        self.passwords = CredentialPolicyEngine(self.store, audit=self.audit, default_policy=cfg.passwords, logger=self.logger.getChild("passwords"))
        self.sessions = SessionValidator(
            resolve_session_secret(cfg.session.secret),
            session_timeout_minutes=cfg.session.session_timeout_minutes,
            algorithm=cfg.session.algorithm,
            audit=self.audit,
            logger=self.logger.getChild("session"),
            now=self._now,
        )
        self.vault = StateVault(
            self.store,
            self.audit,
            users=users,
            default_config=cfg.backup.defaults,
            cipher=cipher if cipher is not None else self._backup_cipher(cfg),
            export_dir=cfg.backup.export_dir,
            logger=self.logger.getChild("backup"),
            now=self._now,
        )
        self.scheduler = AutoBackupScheduler(
            self.vault,
            poll_seconds=cfg.backup.scheduler_poll_seconds,
            logger=self.logger.getChild("backup.scheduler"),
            now=self._now,
        )

    @staticmethod
    def _backup_cipher(cfg: WardenConfig) -> Optional[Cipher]:
        # An existing key is loaded even with encryption off so older encrypted backups stay restorable.
        path = cfg.backup.key_path
        if cfg.backup.defaults.encryption_enabled or os.path.exists(path):
            return AesGcmCipher(load_or_create_key(path))
        return None

    # ---------- flows ----------
    def login(
        self,
        identity: str,
        ip: str,
        *,
        credentials_valid: bool,
        totp_code: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
    ) -> str:
        """
        Origin check, second factor, attempt accounting, then a session token.

        Identities with an enabled two-factor enrollment must also pass
        `totp_code`; a wrong or missing code counts as a failed attempt.
        Raises AccessDeniedError for a blocked origin or bad credentials and
        AccountLockedError while the identity is locked out.
        """
        self.gate.require_origin(ip, resource="admin_login")
        self.gate.require_origin_unblocked(ip, resource="admin_login")
        second_factor_ok = True
        if credentials_valid and self.two_factor.is_enabled(identity) and not self.gate.is_locked(identity):
            second_factor_ok = self.two_factor.verify(identity, totp_code, origin=ip)
        ok = credentials_valid and second_factor_ok
        decision = self.gate.record_attempt(identity, ip, AttemptOutcome.success if ok else AttemptOutcome.failure)
        decision.raise_for_lock()
        if not credentials_valid:
            raise AccessDeniedError("Invalid credentials.", identity=decision.identity, fail_count=decision.fail_count)
        if not second_factor_ok:
            raise AccessDeniedError("Invalid two-factor code.", identity=decision.identity, fail_count=decision.fail_count)
        ttl = float(ttl_seconds) if ttl_seconds is not None else self.cfg.session.session_timeout_minutes * 60.0
        return self.sessions.issue(decision.identity, ttl_seconds=ttl)

    def record_attempt(self, identity: str, ip: Optional[str], outcome: Union[AttemptOutcome, str, bool]) -> AttemptDecision:
        return self.gate.record_attempt(identity, ip, outcome)

    def authorize(self, actor: Actor, role: Union[AdminRole, str], permission: Union[Permission, str], *, origin: Optional[str] = None) -> None:
        try:
            require_permission(role, permission)
        except AccessDeniedError:
            self.audit.record(
                AuditAction.PERMISSION_DENIED,
                resource=str(getattr(permission, "value", permission)),
                success=False,
                actor=actor,
                origin=origin,
                details={"role": str(getattr(role, "value", role))},
            )
            raise

    # ---------- lifecycle ----------
    def start(self) -> None:
        if self.vault.get_config().auto_backup_enabled:
            self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def status(self) -> Dict[str, Any]:
        audit = self.audit.summary()
        access = self.gate.status()
        return {
            "total_logs": audit["total_events"],
            "recent_failures": audit["recent_failures"],
            "locked_accounts": access["locked_accounts"],
            "access": access,
            "audit": audit,
            "backups": self.vault.stats(),
            "password_policy": self.passwords.get_policy().model_dump(),
            "two_factor_enabled": self.two_factor.enrolled_count(),
            "session_timeout_minutes": self.sessions.session_timeout_minutes,
            "durable_storage": self.store.durable,
            "auto_backup_running": self.scheduler.is_running(),
        }


def build_core(cfg: Optional[WardenConfig] = None, **kwargs: Any) -> SecurityCore:
    return SecurityCore(cfg or WardenConfig.in_memory(), **kwargs)


__all__ = ["SecurityCore", "build_core"]
