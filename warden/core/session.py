from __future__ import annotations

import logging
import os
import secrets
import time
from typing import Any, Callable, Dict, Optional

import jwt
from pydantic import BaseModel, ConfigDict

from warden.core.audit.log import AuditLog
from warden.core.audit.models import AuditAction
from warden.core.errors import TokenError


SESSION_SECRET_ENV = "WARDEN_SESSION_SECRET"
_REQUIRED_CLAIMS = ("sub", "iat", "exp")


class SessionClaims(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subject: str
    issued_at: float
    expires_at: float


class SessionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_valid: bool
    subject: Optional[str] = None
    error: Optional[str] = None
    claims: Optional[SessionClaims] = None


def resolve_session_secret(configured: Optional[str]) -> str:
    """Env var wins over config; with neither, a per-process random key is used."""
    env = os.environ.get(SESSION_SECRET_ENV)
    if env:
        return env
    if configured:
        return configured
    return secrets.token_urlsafe(32)


class SessionValidator:
    """
    Signed session token checks.

    The signature is verified by PyJWT; expiry and idle timeout are evaluated
    against the injected clock so they stay deterministic under test.
    """

    def __init__(
        self,
        secret: str,
        *,
        session_timeout_minutes: int = 30,
        algorithm: str = "HS256",
        audit: Optional[AuditLog] = None,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ):
        if not secret:
            raise ValueError("Session secret must be non-empty.")
        if int(session_timeout_minutes) < 1:
            raise ValueError("session_timeout_minutes must be >= 1")
        self._secret = secret
        self.session_timeout_minutes = int(session_timeout_minutes)
        self.algorithm = algorithm
        self.audit = audit
        self.logger = logger or logging.getLogger("warden.session")
        self._now = now or time.time

    def issue(self, subject: str, *, ttl_seconds: float = 3600.0, issued_at: Optional[float] = None) -> str:
        if not subject:
            raise ValueError("Session subject must be non-empty.")
        iat = float(self._now()) if issued_at is None else float(issued_at)
        claims: Dict[str, Any] = {"sub": subject, "iat": iat, "exp": iat + float(ttl_seconds)}
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> SessionClaims:
        """Signature and shape only; no time checks."""
        if not isinstance(token, str) or not token:
            raise TokenError("invalid")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False, "require": list(_REQUIRED_CLAIMS)},
            )
        except jwt.InvalidTokenError as e:
            raise TokenError("invalid", detail=type(e).__name__) from e
        try:
            return SessionClaims(subject=str(payload["sub"]), issued_at=float(payload["iat"]), expires_at=float(payload["exp"]))
        except (KeyError, TypeError, ValueError) as e:
            raise TokenError("invalid", detail="bad_claims") from e

    def require(self, token: str) -> SessionClaims:
        try:
            claims = self.decode(token)
            now = float(self._now())
            if now > claims.expires_at:
                raise TokenError("expired", subject=claims.subject)
            if now - claims.issued_at > self.session_timeout_minutes * 60:
                raise TokenError("idle-timeout", subject=claims.subject)
        except TokenError as e:
            self._reject(e)
            raise
        return claims

    def validate(self, token: str) -> SessionResult:
        try:
            claims = self.require(token)
        except TokenError as e:
            return SessionResult(is_valid=False, subject=e.context.get("subject"), error=e.reason)
        return SessionResult(is_valid=True, subject=claims.subject, claims=claims)

    # ---- internals ----
    def _reject(self, e: TokenError) -> None:
        self.logger.info("Session rejected: %s", e.reason)
        if self.audit is None:
            return
        subject = e.context.get("subject") or "unknown"
        self.audit.record(
            AuditAction.SESSION_REJECTED,
            resource="session",
            success=False,
            details={"reason": e.reason, "subject": subject},
        )
