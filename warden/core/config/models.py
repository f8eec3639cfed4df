from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from warden.core.access.models import AccessPolicy, LockoutConfig, TwoFactorConfig
from warden.core.backup.models import BackupConfig
from warden.core.passwords.models import PasswordPolicy


class AccessConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    policy: AccessPolicy = Field(default_factory=AccessPolicy)
    lockout: LockoutConfig = Field(default_factory=LockoutConfig)
    two_factor: TwoFactorConfig = Field(default_factory=TwoFactorConfig)


class SessionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_timeout_minutes: int = Field(default=30, ge=1, le=24 * 60)
    # Empty means: take WARDEN_SESSION_SECRET, else a random per-process key.
    secret: str = ""
    algorithm: Literal["HS256"] = "HS256"


class BackupSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    defaults: BackupConfig = Field(default_factory=BackupConfig)
    key_path: str = "secure/backup.key"
    export_dir: str = "backups"
    scheduler_poll_seconds: float = Field(default=60.0, gt=0)


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    capacity: int = Field(default=1000, ge=1, le=1_000_000)


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # None keeps all state in memory.
    state_dir: Optional[str] = "state"


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_dir: Optional[str] = "logs"
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _level(cls, v: str) -> str:
        v = str(v or "").upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return v


class WardenConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    config_version: int = 1
    access: AccessConfig = Field(default_factory=AccessConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    passwords: PasswordPolicy = Field(default_factory=PasswordPolicy)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def in_memory(cls) -> "WardenConfig":
        """Defaults with no files touched: memory state, console-only logging."""
        return cls(storage=StorageConfig(state_dir=None), logging=LoggingConfig(log_dir=None))
