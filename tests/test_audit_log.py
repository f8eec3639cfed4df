from __future__ import annotations

import json
import logging
import threading

import pytest

from warden.core.audit.log import AuditLog
from warden.core.audit.models import Actor, AuditAction, SecurityEventDraft
from warden.core.store import JsonDirBackend, SecurityStore

from .helpers.fakes import FakeClock


def _draft(i: int, *, success: bool = True, action: AuditAction = AuditAction.LOGIN_SUCCESS, actor: str = "u1") -> SecurityEventDraft:
    return SecurityEventDraft(actor_id=actor, action=action, resource="admin_login", success=success, details={"n": i})


def test_append_assigns_id_and_timestamp():
    clock = FakeClock()
    log = AuditLog(SecurityStore(), now=clock.time)
    a = log.append(_draft(1))
    b = log.append({"action": "LOGIN_FAILURE", "resource": "admin_login", "success": False})
    assert a.id != b.id
    assert a.timestamp == clock.time()
    assert b.action == AuditAction.LOGIN_FAILURE


def test_capacity_evicts_oldest():
    clock = FakeClock()
    log = AuditLog(SecurityStore(), now=clock.time)
    first = log.append(_draft(0))
    for i in range(1, 1001):
        clock.advance(1)
        log.append(_draft(i))
    assert len(log) == 1000
    events = log.query()
    assert len(events) == 1000
    assert first.id not in {ev.id for ev in events}
    assert [ev.timestamp for ev in events] == sorted((ev.timestamp for ev in events), reverse=True)
    assert events[0].details == {"n": 1000}


def test_query_newest_first_on_equal_timestamps():
    log = AuditLog(SecurityStore(), now=lambda: 100.0)
    ids = [log.append(_draft(i)).id for i in range(5)]
    assert [ev.id for ev in log.query()] == list(reversed(ids))


def test_query_filters():
    clock = FakeClock()
    log = AuditLog(SecurityStore(), now=clock.time)
    log.append(_draft(1, actor="a"))
    clock.advance(10)
    log.append(_draft(2, actor="b", success=False, action=AuditAction.LOGIN_FAILURE))
    clock.advance(10)
    log.append(_draft(3, actor="a", success=False, action=AuditAction.LOGIN_FAILURE))
    start = clock.time() - 10

    assert [ev.details["n"] for ev in log.query({"actor_id": "a"})] == [3, 1]
    assert [ev.details["n"] for ev in log.query({"success": False})] == [3, 2]
    assert [ev.details["n"] for ev in log.query({"action": "LOGIN_SUCCESS"})] == [1]
    # date range bounds are inclusive
    assert [ev.details["n"] for ev in log.query({"start": start, "end": start})] == [2]


def test_export_is_insertion_order_json():
    log = AuditLog(SecurityStore(), now=lambda: 1.0)
    for i in range(3):
        log.append(_draft(i))
    data = json.loads(log.export())
    assert [e["details"]["n"] for e in data] == [0, 1, 2]
    assert set(data[0]) >= {"id", "timestamp", "actor_id", "action", "resource", "success"}


def test_record_uses_actor():
    log = AuditLog(SecurityStore())
    ev = log.record(AuditAction.BACKUP_CREATED, resource="backup", success=True, actor=Actor(actor_id="u9", actor_email="u9@x.io"))
    assert (ev.actor_id, ev.actor_email) == ("u9", "u9@x.io")
    assert log.record(AuditAction.BACKUP_DELETED, resource="backup", success=True).actor_id == "system"


def test_events_mirrored_to_logger_with_redaction(caplog):
    logger = logging.getLogger("audit-mirror-test")
    log = AuditLog(SecurityStore(), logger=logger)
    with caplog.at_level(logging.INFO, logger="audit-mirror-test"):
        log.record(AuditAction.LOGIN_FAILURE, resource="admin_login", success=False, details={"password": "hunter2"})
    assert "LOGIN_FAILURE" in caplog.text
    assert "hunter2" not in caplog.text


def test_summary_counts_recent_failures():
    clock = FakeClock()
    log = AuditLog(SecurityStore(), now=clock.time)
    log.append(_draft(1, success=False))
    clock.advance(2 * 86400)
    log.append(_draft(2, success=False))
    log.append(_draft(3))
    assert log.summary() == {"total_events": 3, "recent_failures": 1, "capacity": 1000}


def test_durable_backend_reloads(tmp_path):
    store = SecurityStore(JsonDirBackend(str(tmp_path)))
    log = AuditLog(store, capacity=3)
    for i in range(5):
        log.append(_draft(i))
    reloaded = AuditLog(SecurityStore(JsonDirBackend(str(tmp_path))), capacity=3)
    assert [ev.details["n"] for ev in reversed(reloaded.query())] == [2, 3, 4]


def test_concurrent_appends_stay_bounded():
    log = AuditLog(SecurityStore(), capacity=50)

    def worker(k: int) -> None:
        for i in range(100):
            log.append(_draft(k * 1000 + i))

    threads = [threading.Thread(target=worker, args=(k,)) for k in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(log) == 50


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        AuditLog(SecurityStore(), capacity=0)
