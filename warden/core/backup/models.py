from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BackupKind(str, Enum):
    full = "full"
    users = "users"
    config = "config"
    security = "security"


class BackupConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    auto_backup_enabled: bool = True
    interval_hours: int = Field(default=24, ge=1, le=24 * 365)
    max_backups: int = Field(default=10, ge=1, le=1000)
    kinds: List[BackupKind] = Field(default_factory=lambda: [BackupKind.full, BackupKind.users, BackupKind.config])
    compression_enabled: bool = True
    encryption_enabled: bool = False
    storage_target: str = "local"

    @field_validator("storage_target")
    @classmethod
    def _target(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("storage_target must be 'local' or a directory path")
        return v


class Backup(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=lambda: time.time())
    kind: BackupKind
    payload: str
    checksum: str
    size: int = Field(ge=0)
    transforms: List[str] = Field(default_factory=list)
    description: str = ""


class RestoreResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backup_id: str
    kind: BackupKind
    restored: List[str] = Field(default_factory=list)
    restored_at: float
    counts: Dict[str, int] = Field(default_factory=dict)
