from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from warden.core.audit.models import Actor
from warden.core.backup.models import Backup
from warden.core.backup.vault import StateVault
from warden.core.errors import WardenError


SCHEDULER_ACTOR = Actor(actor_id="auto-backup")


class AutoBackupScheduler:
    """
    Creates one backup per configured kind every `interval_hours`.

    The interval and kinds are re-read from the vault's BackupConfig on every
    tick, so config updates take effect without a restart. `run_due()` is the
    single step the background thread repeats.
    """

    def __init__(
        self,
        vault: StateVault,
        *,
        poll_seconds: float = 60.0,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ):
        self.vault = vault
        self.poll_seconds = float(poll_seconds)
        self.logger = logger or logging.getLogger("warden.backup.scheduler")
        self._now = now or time.time
        self._last_run = float(self._now())
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def last_run(self) -> float:
        return self._last_run

    def next_due(self) -> Optional[float]:
        cfg = self.vault.get_config()
        if not cfg.auto_backup_enabled:
            return None
        return self._last_run + cfg.interval_hours * 3600.0

    def run_due(self, now: Optional[float] = None) -> List[Backup]:
        now = float(self._now()) if now is None else float(now)
        with self._lock:
            due = self.next_due()
            if due is None or now < due:
                return []
            self._last_run = now
            kinds = list(self.vault.get_config().kinds)
        created: List[Backup] = []
        for kind in kinds:
            try:
                created.append(self.vault.create_backup(kind, actor=SCHEDULER_ACTOR, description=f"Automatic {kind.value} backup"))
            except WardenError as e:
                self.logger.error("Automatic %s backup failed: %s", kind.value, e.user_message)
            except Exception:
                self.logger.exception("Automatic %s backup failed", kind.value)
        return created

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="auto-backup", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self.poll_seconds):
            try:
                self.run_due()
            except Exception:
                self.logger.exception("Auto backup tick failed")
