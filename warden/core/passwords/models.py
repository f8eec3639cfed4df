from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PasswordPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_length: int = Field(default=12, ge=4, le=1024)
    max_length: int = Field(default=128, ge=4, le=1024)
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    prevent_common_passwords: bool = True
    prevent_user_info: bool = True

    @model_validator(mode="after")
    def _check_bounds(self) -> "PasswordPolicy":
        if self.min_length > self.max_length:
            raise ValueError("min_length must not exceed max_length")
        return self


class UserInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    def fragments(self) -> List[str]:
        parts = [
            (self.first_name or "").strip().lower(),
            (self.last_name or "").strip().lower(),
            (self.email or "").strip().lower().split("@")[0],
        ]
        return [p for p in parts if p]


class PasswordStrength(str, Enum):
    weak = "weak"
    medium = "medium"
    strong = "strong"
    very_strong = "very-strong"


class PasswordValidationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    strength: PasswordStrength
    score: int = Field(ge=0, le=100)
