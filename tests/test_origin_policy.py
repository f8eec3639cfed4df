from __future__ import annotations

import pytest

from warden.core.access.gate import AccessGate
from warden.core.access.models import AccessPolicy
from warden.core.audit.log import AuditLog
from warden.core.audit.models import Actor, AuditAction
from warden.core.errors import AccessDeniedError, ValidationError
from warden.core.store import SecurityStore


def _gate(policy=None):
    store = SecurityStore()
    audit = AuditLog(store)
    return AccessGate(store, audit, default_policy=policy), audit


def test_default_allows_loopback_only():
    gate, audit = _gate()
    assert gate.validate_origin("127.0.0.1") is True
    assert gate.validate_origin("::1") is True
    assert len(audit) == 0

    assert gate.validate_origin("203.0.113.9") is False
    ev = audit.query()[0]
    assert ev.action == AuditAction.IP_ACCESS_DENIED
    assert ev.origin == "203.0.113.9"
    assert ev.success is False


def test_cidr_ranges_and_version_mismatch():
    gate, _ = _gate(AccessPolicy(allowed_ips=[], allowed_ranges=["10.0.0.0/8", "2001:db8::/32"]))
    assert gate.validate_origin("10.1.2.3")
    assert gate.validate_origin("2001:db8::1")
    assert not gate.validate_origin("11.0.0.1")
    assert not gate.validate_origin("::ffff:10.0.0.1")


def test_malformed_ip_denied():
    gate, _ = _gate()
    assert gate.validate_origin("not-an-ip") is False
    assert gate.validate_origin("") is False


def test_blacklist_mode_inverts():
    gate, _ = _gate(AccessPolicy(allowed_ips=["198.51.100.7"], whitelist_mode=False))
    assert gate.validate_origin("198.51.100.7") is False
    assert gate.validate_origin("198.51.100.8") is True


def test_disabled_policy_allows_everything():
    gate, _ = _gate(AccessPolicy(enabled=False, allowed_ips=[]))
    assert gate.validate_origin("8.8.8.8")


def test_require_origin_raises():
    gate, _ = _gate()
    with pytest.raises(AccessDeniedError):
        gate.require_origin("8.8.8.8")


def test_update_access_policy_validates_and_logs():
    gate, audit = _gate()
    admin = Actor(actor_id="u1", actor_email="root@example.com")
    p = gate.update_access_policy(actor=admin, allowed_ranges=["192.168.0.0/16"])
    assert p.allowed_ranges == ["192.168.0.0/16"]
    assert gate.validate_origin("192.168.4.4")
    ev = audit.query({"action": AuditAction.ACCESS_POLICY_UPDATED})[0]
    assert ev.actor_id == "u1"
    assert ev.details == {"changed": ["allowed_ranges"]}

    with pytest.raises(ValidationError) as ei:
        gate.update_access_policy(allowed_ranges=["999.0.0.0/8"])
    assert ei.value.reasons
    assert gate.get_access_policy().allowed_ranges == ["192.168.0.0/16"]
