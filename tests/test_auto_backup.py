from __future__ import annotations

import logging
import threading

from warden.core.backup.models import BackupKind
from warden.core.backup.scheduler import AutoBackupScheduler


def test_nothing_due_before_interval(core, clock):
    sched = AutoBackupScheduler(core.vault, now=clock.time)
    clock.advance(23 * 3600)
    assert sched.run_due() == []
    assert core.vault.list_backups() == []


def test_creates_one_backup_per_configured_kind(core, clock):
    sched = AutoBackupScheduler(core.vault, now=clock.time)
    clock.advance(24 * 3600)
    created = sched.run_due()
    assert [b.kind for b in created] == [BackupKind.full, BackupKind.users, BackupKind.config]
    assert sched.last_run == clock.time()
    assert sched.run_due() == []
    assert all(ev.actor_id == "auto-backup" for ev in core.audit.query({"action": "BACKUP_CREATED"}))


def test_respects_config_changes(core, clock):
    sched = AutoBackupScheduler(core.vault, now=clock.time)
    core.vault.update_config(interval_hours=1, kinds=["security"])
    clock.advance(3600)
    assert [b.kind for b in sched.run_due()] == [BackupKind.security]

    core.vault.update_config(auto_backup_enabled=False)
    clock.advance(10 * 3600)
    assert sched.next_due() is None
    assert sched.run_due() == []


def test_retention_applies_to_automatic_backups(core, clock):
    core.vault.update_config(interval_hours=1, max_backups=4)
    sched = AutoBackupScheduler(core.vault, now=clock.time)
    for _ in range(3):
        clock.advance(3600)
        sched.run_due()
    assert len(core.vault.list_backups()) == 4


def test_thread_start_stop(core):
    sched = AutoBackupScheduler(core.vault, poll_seconds=0.01)
    sched.start()
    assert sched.is_running()
    sched.stop()
    assert not sched.is_running()


def test_unexpected_error_in_one_kind_does_not_stop_the_rest(core, clock, monkeypatch, caplog):
    real_create = core.vault.create_backup

    def flaky(kind, **kwargs):
        if BackupKind(kind) is BackupKind.full:
            raise OSError("disk full")
        return real_create(kind, **kwargs)

    monkeypatch.setattr(core.vault, "create_backup", flaky)
    sched = AutoBackupScheduler(core.vault, now=clock.time)
    clock.advance(25 * 3600)
    with caplog.at_level(logging.ERROR, logger="warden.backup.scheduler"):
        created = sched.run_due()
    assert [b.kind for b in created] == [BackupKind.users, BackupKind.config]
    assert "Automatic full backup failed" in caplog.text
    assert "disk full" in caplog.text


def test_thread_survives_failing_ticks(core, monkeypatch):
    ticks = []
    survived = threading.Event()

    def broken_config():
        ticks.append(1)
        if len(ticks) >= 3:
            survived.set()
        raise OSError("state dir unreadable")

    sched = AutoBackupScheduler(core.vault, poll_seconds=0.01)
    monkeypatch.setattr(core.vault, "get_config", broken_config)
    sched.start()
    try:
        assert survived.wait(timeout=5)
        assert sched.is_running()
    finally:
        sched.stop()
