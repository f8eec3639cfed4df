from __future__ import annotations

from warden.core.backup.collector import InMemoryUserDirectory, UserDirectory
from warden.core.backup.models import Backup, BackupConfig, BackupKind, RestoreResult
from warden.core.backup.scheduler import AutoBackupScheduler
from warden.core.backup.transforms import AesGcmCipher, Cipher, Compressor, IdentityCompressor, NullCipher, ZlibCompressor, load_or_create_key
from warden.core.backup.vault import StateVault

__all__ = [
    "AesGcmCipher",
    "AutoBackupScheduler",
    "Backup",
    "BackupConfig",
    "BackupKind",
    "Cipher",
    "Compressor",
    "IdentityCompressor",
    "InMemoryUserDirectory",
    "NullCipher",
    "RestoreResult",
    "StateVault",
    "UserDirectory",
    "ZlibCompressor",
    "load_or_create_key",
]
