from __future__ import annotations

from warden.core.audit.log import DEFAULT_CAPACITY, AuditLog
from warden.core.audit.models import SYSTEM_ACTOR, Actor, AuditAction, AuditQuery, SecurityEvent, SecurityEventDraft

__all__ = [
    "DEFAULT_CAPACITY",
    "AuditLog",
    "Actor",
    "AuditAction",
    "AuditQuery",
    "SecurityEvent",
    "SecurityEventDraft",
    "SYSTEM_ACTOR",
]
