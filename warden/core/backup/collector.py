from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from warden.core.access.models import AccessPolicy, AttemptRecord
from warden.core.audit.log import AuditLog
from warden.core.audit.models import SecurityEvent
from warden.core.backup.models import BackupConfig, BackupKind
from warden.core.passwords.models import PasswordPolicy
from warden.core.store import SecurityStore


class UserDirectory(Protocol):
    """Host-owned admin user records. The vault only snapshots and replaces them."""

    def export_users(self) -> List[Dict[str, Any]]: ...

    def import_users(self, users: List[Dict[str, Any]]) -> None: ...


class InMemoryUserDirectory:
    def __init__(self, users: Optional[List[Dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self._users: List[Dict[str, Any]] = copy.deepcopy(list(users or []))

    def export_users(self) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._users)

    def import_users(self, users: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._users = copy.deepcopy(list(users))


class ConfigSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    password_policy: PasswordPolicy
    backup_config: BackupConfig
    access_policy: AccessPolicy


class SecuritySection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    events: List[SecurityEvent] = Field(default_factory=list)
    attempts: Dict[str, AttemptRecord] = Field(default_factory=dict)
    lockouts: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _lockouts_have_records(self) -> "SecuritySection":
        missing = [i for i in self.lockouts if i not in self.attempts]
        if missing:
            raise ValueError(f"locked identities without attempt records: {', '.join(sorted(missing))}")
        return self


class Snapshot(BaseModel):
    """Decoded backup body. Which sections are present depends on the kind."""

    model_config = ConfigDict(extra="forbid")

    kind: BackupKind
    users: Optional[List[Dict[str, Any]]] = None
    config: Optional[ConfigSection] = None
    security: Optional[SecuritySection] = None

    @model_validator(mode="after")
    def _sections_match_kind(self) -> "Snapshot":
        for section in KIND_SECTIONS[self.kind]:
            if getattr(self, section) is None:
                raise ValueError(f"{self.kind.value} backup is missing its {section} section")
        return self


KIND_SECTIONS: Dict[BackupKind, Tuple[str, ...]] = {
    BackupKind.users: ("users",),
    BackupKind.config: ("config",),
    BackupKind.security: ("security",),
    BackupKind.full: ("users", "config", "security"),
}

_SECTION_NAMESPACES: Dict[str, Tuple[str, ...]] = {
    "users": (),
    "config": ("access-policy", "backup-config", "password-policy"),
    "security": ("attempts", "events", "lockouts"),
}


def namespaces_for(kind: BackupKind) -> Tuple[str, ...]:
    out: List[str] = []
    for section in KIND_SECTIONS[BackupKind(kind)]:
        out.extend(_SECTION_NAMESPACES[section])
    return tuple(sorted(set(out)))


def gather(
    kind: BackupKind,
    *,
    store: SecurityStore,
    audit: AuditLog,
    users: UserDirectory,
    default_backup_config: Optional[BackupConfig] = None,
) -> Dict[str, Any]:
    """Collect the JSON-ready state for `kind`. Caller holds the kind's namespace locks."""
    kind = BackupKind(kind)
    body: Dict[str, Any] = {"kind": kind.value}
    for section in KIND_SECTIONS[kind]:
        if section == "users":
            body["users"] = users.export_users()
        elif section == "config":
            body["config"] = {
                "password_policy": store.read("password-policy", default=PasswordPolicy().model_dump()),
                "backup_config": store.read("backup-config", default=(default_backup_config or BackupConfig()).model_dump(mode="json")),
                "access_policy": store.read("access-policy", default=AccessPolicy().model_dump()),
            }
        elif section == "security":
            body["security"] = {
                "events": audit.snapshot(),
                "attempts": store.read("attempts", default={}),
                "lockouts": store.read("lockouts", default=[]),
            }
    return body


def apply(snapshot: Snapshot, *, store: SecurityStore, audit: AuditLog, users: UserDirectory) -> Dict[str, int]:
    """Replace live state with a validated snapshot. Caller holds the kind's namespace locks."""
    counts: Dict[str, int] = {}
    if snapshot.users is not None:
        users.import_users(snapshot.users)
        counts["users"] = len(snapshot.users)
    if snapshot.config is not None:
        store.write_many(
            {
                "password-policy": snapshot.config.password_policy.model_dump(),
                "backup-config": snapshot.config.backup_config.model_dump(mode="json"),
                "access-policy": snapshot.config.access_policy.model_dump(),
            }
        )
        counts["config"] = 3
    if snapshot.security is not None:
        sec = snapshot.security
        audit.replace_all(sec.events)
        store.write_many(
            {
                "attempts": {k: v.model_dump() for k, v in sec.attempts.items()},
                "lockouts": sorted(set(sec.lockouts)),
            }
        )
        counts["events"] = len(sec.events)
        counts["attempts"] = len(sec.attempts)
        counts["lockouts"] = len(set(sec.lockouts))
    return counts
