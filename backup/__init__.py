"""Backup, verification, restore and retention for the application data store."""
from __future__ import annotations

from .api import BackupService
from .config import BackupConfig, load_backup_config
from .errors import BackupError
from .locks import ArtifactLocks, CancelToken
from .logs import BackupLogger

__all__ = [
    "ArtifactLocks",
    "BackupConfig",
    "BackupError",
    "BackupLogger",
    "BackupService",
    "CancelToken",
    "load_backup_config",
]
