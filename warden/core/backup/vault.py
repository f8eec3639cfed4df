from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from warden.core.audit.log import AuditLog
from warden.core.audit.models import SYSTEM_ACTOR, Actor, AuditAction
from warden.core.backup.collector import InMemoryUserDirectory, Snapshot, UserDirectory, apply, gather, namespaces_for
from warden.core.backup.hasher import canonical_json, checksum_matches, sha256_text
from warden.core.backup.models import Backup, BackupConfig, BackupKind, RestoreResult
from warden.core.backup.transforms import Cipher, Compressor, IdentityCompressor, NullCipher, ZlibCompressor, decode_payload, encode_payload
from warden.core.errors import ConfigError, IntegrityError, NotFoundError, ValidationError
from warden.core.store import SecurityStore


_REQUIRED_FIELDS = ("id", "timestamp", "kind", "payload", "checksum")


class StateVault:
    """
    Checksummed snapshots of security state.

    Store namespaces:
    - backups: [Backup...] in insertion order
    - backup-config: BackupConfig

    Create, delete and import hold the `backups` lock. Restore holds `backups`
    plus every namespace of the backup's kind, and validates the whole snapshot
    before writing anything.
    """

    def __init__(
        self,
        store: SecurityStore,
        audit: AuditLog,
        *,
        users: Optional[UserDirectory] = None,
        default_config: Optional[BackupConfig] = None,
        compressor: Optional[Compressor] = None,
        cipher: Optional[Cipher] = None,
        export_dir: str = "backups",
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.audit = audit
        self.users: UserDirectory = users if users is not None else InMemoryUserDirectory()
        self.default_config = default_config or BackupConfig()
        self.compressor: Compressor = compressor or ZlibCompressor()
        self.cipher: Optional[Cipher] = cipher
        self.export_dir = export_dir
        self.logger = logger or logging.getLogger("warden.backup")
        self._now = now or time.time
        with self.store.locked("backup-config"):
            if self.store.read("backup-config") is None:
                self.store.write("backup-config", self.default_config.model_dump(mode="json"))

    # ---------- config ----------
    def get_config(self) -> BackupConfig:
        return BackupConfig.model_validate(self.store.read("backup-config", default=self.default_config.model_dump(mode="json")))

    def update_config(self, *, actor: Actor = SYSTEM_ACTOR, **changes: Any) -> BackupConfig:
        with self.store.locked("backup-config"):
            merged = self.get_config().model_dump(mode="json")
            merged.update(changes)
            try:
                cfg = BackupConfig.model_validate(merged)
            except PydanticValidationError as e:
                raise ValidationError("Invalid backup configuration.", reasons=[err["msg"] for err in e.errors()]) from e
            if cfg.encryption_enabled and self.cipher is None:
                raise ValidationError("Invalid backup configuration.", reasons=["encryption_enabled requires a configured cipher"])
            self.store.write("backup-config", cfg.model_dump(mode="json"))
        self.audit.record(
            AuditAction.BACKUP_CONFIG_UPDATED,
            resource="backup_config",
            success=True,
            actor=actor,
            details={"changed": sorted(changes.keys())},
        )
        return cfg

    # ---------- create ----------
    def create_backup(self, kind: BackupKind = BackupKind.full, *, actor: Optional[Actor] = None, description: Optional[str] = None) -> Backup:
        try:
            kind = BackupKind(kind)
        except ValueError as e:
            raise ValidationError("Unknown backup kind.", reasons=[f"kind must be one of: {', '.join(k.value for k in BackupKind)}"]) from e
        cfg = self.get_config()
        compressor, cipher = self._transforms_for(cfg)

        with self.store.locked("backups", *namespaces_for(kind)):
            body = gather(kind, store=self.store, audit=self.audit, users=self.users, default_backup_config=self.default_config)
            payload, applied = encode_payload(canonical_json(body), compressor=compressor, cipher=cipher)
            backup = Backup(
                timestamp=float(self._now()),
                kind=kind,
                payload=payload,
                checksum=sha256_text(payload),
                size=len(payload.encode("utf-8")),
                transforms=applied,
                description=description or f"{kind.value.capitalize()} backup",
            )
            evicted = self._insert_locked(backup, cfg.max_backups)

        self.logger.info("Backup created id=%s kind=%s size=%d transforms=%s", backup.id, kind.value, backup.size, ",".join(applied) or "none")
        self.audit.record(
            AuditAction.BACKUP_CREATED,
            resource="backup",
            success=True,
            actor=actor,
            details={"backup_id": backup.id, "kind": kind.value, "size": backup.size, "evicted": evicted},
        )
        return backup

    # ---------- restore ----------
    def restore(self, backup_id: str, *, actor: Optional[Actor] = None) -> RestoreResult:
        backup = self.get_backup(backup_id)
        with self.store.locked("backups", *namespaces_for(backup.kind)):
            # re-read under the lock in case of a concurrent delete
            backup = self.get_backup(backup_id)
            try:
                snapshot = self._decode(backup)
            except IntegrityError as e:
                failure: Optional[IntegrityError] = e
            else:
                failure = None
                counts = apply(snapshot, store=self.store, audit=self.audit, users=self.users)

        if failure is not None:
            self.logger.warning("Backup restore failed id=%s: %s", backup.id, failure.user_message)
            self.audit.record(
                AuditAction.BACKUP_RESTORE_FAILED,
                resource="backup",
                success=False,
                actor=actor,
                details={"backup_id": backup.id, "kind": backup.kind.value, "error": failure.user_message},
            )
            raise failure

        result = RestoreResult(
            backup_id=backup.id,
            kind=backup.kind,
            restored=[s for s in ("users", "config", "security") if getattr(snapshot, s) is not None],
            restored_at=float(self._now()),
            counts=counts,
        )
        self.logger.info("Backup restored id=%s kind=%s", backup.id, backup.kind.value)
        self.audit.record(
            AuditAction.BACKUP_RESTORED,
            resource="backup",
            success=True,
            actor=actor,
            details={"backup_id": backup.id, "kind": backup.kind.value, "restored": result.restored},
        )
        return result

    # ---------- listing ----------
    def list_backups(self) -> List[Backup]:
        items = [Backup.model_validate(b) for b in self.store.read("backups", default=[])]
        items.reverse()
        items.sort(key=lambda b: b.timestamp, reverse=True)
        return items

    def get_backup(self, backup_id: str) -> Backup:
        for raw in self.store.read("backups", default=[]):
            if raw.get("id") == backup_id:
                return Backup.model_validate(raw)
        raise NotFoundError("Backup not found.", backup_id=backup_id)

    def delete_backup(self, backup_id: str, *, actor: Optional[Actor] = None) -> bool:
        with self.store.locked("backups"):
            items = self.store.read("backups", default=[])
            kept = [b for b in items if b.get("id") != backup_id]
            if len(kept) == len(items):
                return False
            self.store.write("backups", kept)
        self.audit.record(AuditAction.BACKUP_DELETED, resource="backup", success=True, actor=actor, details={"backup_id": backup_id})
        return True

    def stats(self) -> Dict[str, Any]:
        items = self.list_backups()
        by_kind = {k.value: 0 for k in BackupKind}
        for b in items:
            by_kind[b.kind.value] += 1
        return {
            "total": len(items),
            "total_size": sum(b.size for b in items),
            "by_kind": by_kind,
            "latest": items[0].timestamp if items else None,
        }

    # ---------- files ----------
    def export_to_file(self, backup_id: str, path: Optional[str] = None, *, actor: Optional[Actor] = None) -> str:
        backup = self.get_backup(backup_id)
        if path is None:
            target = self.get_config().storage_target
            directory = self.export_dir if target == "local" else target
            path = os.path.join(directory, f"warden-backup-{backup.kind.value}-{backup.id}.json")
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(backup.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp, path)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
        self.audit.record(AuditAction.BACKUP_EXPORTED, resource="backup", success=True, actor=actor, details={"backup_id": backup.id, "path": path})
        return path

    def import_from_file(self, path: str, *, actor: Optional[Actor] = None) -> Backup:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError as e:
            raise NotFoundError("Backup file not found.", path=path) from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError("Backup file is not valid JSON.", reasons=[str(e)], path=path) from e
        if not isinstance(raw, dict):
            raise ValidationError("Backup file has an unexpected shape.", reasons=["expected a JSON object"], path=path)
        missing = [k for k in _REQUIRED_FIELDS if k not in raw]
        if missing:
            raise ValidationError("Backup file is missing required fields.", reasons=[f"missing field: {k}" for k in missing], path=path)
        raw.setdefault("size", len(str(raw.get("payload", "")).encode("utf-8")))
        try:
            backup = Backup.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError("Backup file is invalid.", reasons=[err["msg"] for err in e.errors()], path=path) from e
        if not checksum_matches(backup.payload, backup.checksum):
            raise IntegrityError("Backup file checksum does not match its payload.", backup_id=backup.id, path=path)
        # only restorable backups enter the collection
        self._decode(backup)

        max_backups = self.get_config().max_backups
        with self.store.locked("backups"):
            evicted = self._insert_locked(backup, max_backups)
        self.audit.record(
            AuditAction.BACKUP_IMPORTED,
            resource="backup",
            success=True,
            actor=actor,
            details={"backup_id": backup.id, "kind": backup.kind.value, "evicted": evicted},
        )
        return backup

    # ---- internals ----
    def _transforms_for(self, cfg: BackupConfig) -> tuple:
        compressor: Compressor = self.compressor if cfg.compression_enabled else IdentityCompressor()
        if cfg.encryption_enabled:
            if self.cipher is None:
                raise ConfigError("Backup encryption is enabled but no cipher is configured.")
            return compressor, self.cipher
        return compressor, NullCipher()

    def _insert_locked(self, backup: Backup, max_backups: int) -> List[str]:
        items = [b for b in self.store.read("backups", default=[]) if b.get("id") != backup.id]
        items.append(backup.model_dump(mode="json"))
        evicted: List[str] = []
        while len(items) > int(max_backups):
            # min() returns the first of equal timestamps, i.e. the earliest inserted
            oldest = min(range(len(items)), key=lambda i: float(items[i]["timestamp"]))
            evicted.append(items.pop(oldest)["id"])
        self.store.write("backups", items)
        return evicted

    def _decode(self, backup: Backup) -> Snapshot:
        if not checksum_matches(backup.payload, backup.checksum):
            raise IntegrityError("Backup checksum does not match its payload.", backup_id=backup.id)
        text = decode_payload(backup.payload, backup.transforms, compressor=self.compressor, cipher=self.cipher)
        try:
            snapshot = Snapshot.model_validate_json(text)
        except PydanticValidationError as e:
            raise IntegrityError("Backup contents failed validation.", backup_id=backup.id, reasons=[err["msg"] for err in e.errors()]) from e
        if snapshot.kind != backup.kind:
            raise IntegrityError("Backup contents do not match the recorded kind.", backup_id=backup.id)
        return snapshot
