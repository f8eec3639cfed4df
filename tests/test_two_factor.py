from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pyotp
import pytest

from warden.core.access.models import TwoFactorConfig
from warden.core.access.totp import TwoFactorVerifier
from warden.core.audit.log import AuditLog
from warden.core.audit.models import AuditAction
from warden.core.errors import AccessDeniedError, AccountLockedError, NotFoundError
from warden.core.security_core import SecurityCore
from warden.core.store import SecurityStore

from .helpers.fakes import FakeClock


IP = "127.0.0.1"


def _verifier(clock: FakeClock, **cfg):
    store = SecurityStore()
    audit = AuditLog(store, now=clock.time)
    return TwoFactorVerifier(store, audit, cfg=TwoFactorConfig(**cfg) if cfg else None, now=clock.time), audit


def _enabled(verifier: TwoFactorVerifier, clock: FakeClock, identity: str = "admin@example.com"):
    start = verifier.enroll(identity)
    assert verifier.confirm(identity, verifier.code_at(start.secret, clock.time()))
    # move three steps past the confirming code so neighbouring steps are fresh
    clock.advance(90)
    return start


def test_codes_match_rfc6238_generator():
    clock = FakeClock()
    verifier, _ = _verifier(clock)
    start = verifier.enroll("Admin@Example.com")
    assert start.identity == "admin@example.com"
    assert verifier.code_at(start.secret, clock.time()) == pyotp.TOTP(start.secret).at(int(clock.time()))


def test_provisioning_uri_carries_issuer_and_account():
    clock = FakeClock()
    verifier, audit = _verifier(clock, issuer="Ops Console")
    start = verifier.enroll("admin@example.com")
    uri = urlparse(start.provisioning_uri)
    assert uri.scheme == "otpauth" and uri.netloc == "totp"
    query = parse_qs(uri.query)
    assert query["secret"] == [start.secret]
    assert query["issuer"] == ["Ops Console"]
    assert len(start.backup_codes) == 8
    ev = audit.query({"action": AuditAction.TOTP_ENROLLED})[0]
    assert start.secret not in str(ev.model_dump())


def test_enrollment_is_disabled_until_confirmed():
    clock = FakeClock()
    verifier, audit = _verifier(clock)
    start = verifier.enroll("admin@example.com")
    assert not verifier.is_enabled("admin@example.com")
    with pytest.raises(NotFoundError):
        verifier.verify("admin@example.com", verifier.code_at(start.secret, clock.time()))

    assert verifier.confirm("admin@example.com", "abcdef") is False
    assert not verifier.is_enabled("admin@example.com")
    assert verifier.confirm("admin@example.com", verifier.code_at(start.secret, clock.time()))
    assert verifier.is_enabled("admin@example.com")
    assert audit.query({"action": AuditAction.TOTP_ENABLED})


def test_drift_window_accepts_neighbouring_steps_only():
    clock = FakeClock(start=1_700_000_010.0)
    verifier, _ = _verifier(clock)
    start = _enabled(verifier, clock)
    now = clock.time()

    assert verifier.verify("admin@example.com", verifier.code_at(start.secret, now - 60)) is False
    assert verifier.verify("admin@example.com", verifier.code_at(start.secret, now + 60)) is False
    assert verifier.verify("admin@example.com", verifier.code_at(start.secret, now - 30))
    assert verifier.verify("admin@example.com", verifier.code_at(start.secret, now + 30))


def test_zero_window_accepts_current_step_only():
    clock = FakeClock(start=1_700_000_010.0)
    verifier, _ = _verifier(clock, valid_window=0)
    start = _enabled(verifier, clock)
    now = clock.time()
    assert verifier.verify("admin@example.com", verifier.code_at(start.secret, now - 30)) is False
    assert verifier.verify("admin@example.com", verifier.code_at(start.secret, now))


def test_code_cannot_be_replayed():
    clock = FakeClock()
    verifier, audit = _verifier(clock)
    start = _enabled(verifier, clock)
    code = verifier.code_at(start.secret, clock.time())
    assert verifier.verify("admin@example.com", code)
    assert verifier.verify("admin@example.com", code) is False
    ev = audit.query({"action": AuditAction.TOTP_FAILED})[0]
    assert ev.details == {"reason": "code already used"}
    assert ev.actor_id == "admin@example.com"


def test_backup_codes_are_single_use():
    clock = FakeClock()
    verifier, _ = _verifier(clock, backup_codes=2)
    start = _enabled(verifier, clock)
    code = start.backup_codes[0]
    assert verifier.verify("admin@example.com", code.lower())
    assert verifier.verify("admin@example.com", code) is False
    assert len(verifier.get_enrollment("admin@example.com").backup_code_hashes) == 1
    assert code not in str(verifier.store.read("second-factor"))


def test_missing_code_is_a_logged_failure():
    clock = FakeClock()
    verifier, audit = _verifier(clock)
    _enabled(verifier, clock)
    assert verifier.verify("admin@example.com", None) is False
    assert audit.query({"action": AuditAction.TOTP_FAILED})[0].details == {"reason": "missing code"}


def test_disable_removes_enrollment():
    clock = FakeClock()
    verifier, _ = _verifier(clock)
    _enabled(verifier, clock)
    assert verifier.enrolled_count() == 1
    assert verifier.disable("admin@example.com") is True
    assert verifier.disable("admin@example.com") is False
    assert verifier.enrolled_count() == 0


# ---------- login flow ----------
def test_login_requires_second_factor_once_enabled(core, clock):
    start = _enabled(core.two_factor, clock)
    with pytest.raises(AccessDeniedError) as ei:
        core.login("admin@example.com", IP, credentials_valid=True)
    assert ei.value.user_message == "Invalid two-factor code."
    assert core.gate.get_record("admin@example.com").fail_count == 1

    token = core.login("admin@example.com", IP, credentials_valid=True, totp_code=core.two_factor.code_at(start.secret, clock.time()))
    assert core.sessions.validate(token).subject == "admin@example.com"
    assert core.gate.get_record("admin@example.com").fail_count == 0
    assert core.status()["two_factor_enabled"] == 1


def test_wrong_codes_count_toward_lockout(core, clock):
    start = _enabled(core.two_factor, clock)
    for _ in range(4):
        with pytest.raises(AccessDeniedError):
            core.login("admin@example.com", IP, credentials_valid=True, totp_code="12345x")
    with pytest.raises(AccountLockedError):
        core.login("admin@example.com", IP, credentials_valid=True, totp_code="12345x")

    # a good code while locked is not consumed
    good = core.two_factor.code_at(start.secret, clock.time())
    with pytest.raises(AccountLockedError):
        core.login("admin@example.com", IP, credentials_valid=True, totp_code=good)
    assert core.two_factor.get_enrollment("admin@example.com").last_counter < int(clock.time()) // 30


def test_login_without_enrollment_ignores_code(core):
    assert core.login("plain@example.com", IP, credentials_valid=True, totp_code="whatever")


def test_blocked_origin_refused_before_attempt_accounting(cfg, clock, users):
    c = cfg.model_copy(deep=True)
    c.access.lockout.origin_max_failures = 3
    core = SecurityCore(c, users=users, now=clock.time)
    for i in range(3):
        with pytest.raises(AccessDeniedError):
            core.login(f"user{i}@example.com", IP, credentials_valid=False)
    with pytest.raises(AccessDeniedError) as ei:
        core.login("admin@example.com", IP, credentials_valid=True)
    assert "origin" in ei.value.user_message
    assert core.gate.get_record("admin@example.com") is None
    assert core.audit.query()[0].action == AuditAction.ORIGIN_BLOCKED
