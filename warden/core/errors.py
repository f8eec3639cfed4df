from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from warden.core.redaction import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class WardenError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Core types ----
class ConfigError(WardenError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class ValidationError(WardenError):
    """Input violates a policy. Carries every reason so callers can show them all at once."""

    def __init__(self, user_message: str = "Invalid request.", reasons: Optional[List[str]] = None, **ctx: Any):
        self.reasons: List[str] = list(reasons or [])
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=True, context={"reasons": self.reasons, **ctx})


class AccessDeniedError(WardenError):
    def __init__(self, user_message: str = "Access denied.", **ctx: Any):
        super().__init__("access_denied", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class AccountLockedError(WardenError):
    def __init__(self, locked_until: float, user_message: str = "Account is temporarily locked.", **ctx: Any):
        self.locked_until = float(locked_until)
        super().__init__("account_locked", user_message, severity=Severity.WARN, recoverable=True, context={"locked_until": self.locked_until, **ctx})


class IntegrityError(WardenError):
    def __init__(self, user_message: str = "Backup integrity check failed.", **ctx: Any):
        super().__init__("integrity_error", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class NotFoundError(WardenError):
    def __init__(self, user_message: str = "Not found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class TokenError(WardenError):
    REASONS = ("invalid", "expired", "idle-timeout")

    def __init__(self, reason: str, user_message: Optional[str] = None, **ctx: Any):
        if reason not in self.REASONS:
            raise ValueError(f"Unknown token error reason: {reason!r}")
        self.reason = reason
        messages = {
            "invalid": "Invalid session token.",
            "expired": "Session expired.",
            "idle-timeout": "Session timed out.",
        }
        super().__init__("token_error", user_message or messages[reason], severity=Severity.WARN, recoverable=True, context={"reason": reason, **ctx})
