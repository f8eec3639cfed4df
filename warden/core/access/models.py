from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from warden.core.errors import AccountLockedError


class AttemptOutcome(str, Enum):
    success = "success"
    failure = "failure"


class LockoutConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=5, ge=2, le=1000)
    attempt_window_minutes: float = Field(default=15.0, gt=0, le=24 * 60)
    lockout_minutes: float = Field(default=15.0, gt=0, le=24 * 60)
    # Failed logins from one origin inside the attempt window before it is refused. 0 disables.
    origin_max_failures: int = Field(default=0, ge=0, le=100_000)


class TwoFactorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    issuer: str = "Warden"
    digits: int = Field(default=6, ge=6, le=8)
    interval_seconds: int = Field(default=30, ge=10, le=300)
    # Neighbouring time steps accepted on each side, for clock drift.
    valid_window: int = Field(default=1, ge=0, le=10)
    backup_codes: int = Field(default=8, ge=0, le=32)


class TwoFactorEnrollment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    identity: str
    secret: str
    enabled: bool = False
    enrolled_at: float
    last_counter: Optional[int] = None
    backup_code_hashes: List[str] = Field(default_factory=list)


class AccessPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    allowed_ips: List[str] = Field(default_factory=lambda: ["127.0.0.1", "::1"])
    allowed_ranges: List[str] = Field(default_factory=list)
    # True: only listed origins pass. False: listed origins are blocked.
    whitelist_mode: bool = True

    @field_validator("allowed_ips", mode="before")
    @classmethod
    def _clean_ips(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        out: List[str] = []
        for item in v:
            s = str(item or "").strip()
            if s and s not in out:
                out.append(s)
        return out

    @field_validator("allowed_ranges", mode="before")
    @classmethod
    def _validate_ranges(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        cleaned: List[str] = []
        for item in v:
            cidr = str(item or "").strip()
            if not cidr:
                raise ValueError("allowed_ranges contains an empty CIDR")
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError as exc:
                raise ValueError(f"Invalid CIDR in allowed_ranges: {cidr}") from exc
            cleaned.append(cidr)
        return cleaned

    def is_listed(self, ip: str) -> bool:
        raw = str(ip or "").strip()
        if not raw:
            return False
        if raw in self.allowed_ips:
            return True
        try:
            addr = ipaddress.ip_address(raw)
        except ValueError:
            return False
        for entry in self.allowed_ips:
            try:
                if ipaddress.ip_address(entry) == addr:
                    return True
            except ValueError:
                continue
        for cidr in self.allowed_ranges:
            net = ipaddress.ip_network(cidr, strict=False)
            if addr.version == net.version and addr in net:
                return True
        return False

    def allows(self, ip: str) -> bool:
        if not self.enabled:
            return True
        listed = self.is_listed(ip)
        return listed if self.whitelist_mode else not listed


class AttemptRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    identity: str
    fail_count: int = Field(default=0, ge=0)
    last_attempt_at: float


class AttemptDecision(BaseModel):
    """Result of `AccessGate.record_attempt`: Allowed, or Locked until a timestamp."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    identity: str
    allowed: bool
    fail_count: int = 0
    locked_until: Optional[float] = None

    @property
    def locked(self) -> bool:
        return not self.allowed

    def raise_for_lock(self) -> None:
        if not self.allowed:
            raise AccountLockedError(float(self.locked_until or 0.0), identity=self.identity)
