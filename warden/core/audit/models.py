from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditAction(str, Enum):
    IP_ACCESS_DENIED = "IP_ACCESS_DENIED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGIN_ATTEMPT_LOCKED = "LOGIN_ATTEMPT_LOCKED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    ACCESS_POLICY_UPDATED = "ACCESS_POLICY_UPDATED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SESSION_REJECTED = "SESSION_REJECTED"
    PASSWORD_POLICY_UPDATED = "PASSWORD_POLICY_UPDATED"
    BACKUP_CREATED = "BACKUP_CREATED"
    BACKUP_RESTORED = "BACKUP_RESTORED"
    BACKUP_RESTORE_FAILED = "BACKUP_RESTORE_FAILED"
    BACKUP_DELETED = "BACKUP_DELETED"
    BACKUP_EXPORTED = "BACKUP_EXPORTED"
    BACKUP_IMPORTED = "BACKUP_IMPORTED"
    BACKUP_CONFIG_UPDATED = "BACKUP_CONFIG_UPDATED"
    ORIGIN_BLOCKED = "ORIGIN_BLOCKED"
    TOTP_ENROLLED = "TOTP_ENROLLED"
    TOTP_ENABLED = "TOTP_ENABLED"
    TOTP_DISABLED = "TOTP_DISABLED"
    TOTP_FAILED = "TOTP_FAILED"


class Actor(BaseModel):
    """Who triggered an event. Gate events use the login identity for both fields."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    actor_id: str = "system"
    actor_email: str = ""


SYSTEM_ACTOR = Actor()


class SecurityEventDraft(BaseModel):
    """An event as handed to `AuditLog.append`, before it gets an id and timestamp."""

    model_config = ConfigDict(extra="forbid")

    actor_id: str = "system"
    actor_email: str = ""
    action: AuditAction
    resource: str
    origin: Optional[str] = None
    success: bool
    details: Optional[Dict[str, Any]] = None


class SecurityEvent(SecurityEventDraft):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=lambda: time.time())


class AuditQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: Optional[float] = None
    end: Optional[float] = None
    actor_id: Optional[str] = None
    action: Optional[AuditAction] = None
    success: Optional[bool] = None

    def matches(self, ev: SecurityEvent) -> bool:
        if self.start is not None and ev.timestamp < self.start:
            return False
        if self.end is not None and ev.timestamp > self.end:
            return False
        if self.actor_id is not None and ev.actor_id != self.actor_id:
            return False
        if self.action is not None and ev.action != self.action:
            return False
        if self.success is not None and ev.success != self.success:
            return False
        return True
