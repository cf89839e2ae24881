"""Public API for backup operations."""
from __future__ import annotations

import contextlib
import dataclasses
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set

from .artifacts import format_size, list_artifacts
from .config import BackupConfig, StorageSettings, load_backup_config
from .database import create_database_backup
from .errors import AlreadyRunningError
from .files import create_files_backup
from .locks import ArtifactLocks, CancelToken
from .logs import BackupLogger
from .restore import restore_database, restore_files
from .retention import cleanup_backups
from .types import (
    BACKUP_TYPES,
    ArtifactInfo,
    BackupType,
    CleanupResult,
    DatabaseBackupResult,
    DatabaseRestoreResult,
    FilesBackupResult,
    FilesRestoreResult,
    VerificationResult,
)
from .verify import verify_artifact


class BackupService:
    """Coordinate backup, verification, restore, and retention workflows.

    Every mutating operation holds the lock of its artifact type, so a
    restore never runs while a backup or cleanup of the same type is in
    flight. Calls are synchronous; run them on worker threads.
    """

    def __init__(
        self,
        config: BackupConfig,
        *,
        logger: Optional[BackupLogger] = None,
        locks: Optional[ArtifactLocks] = None,
    ) -> None:
        self._config = config
        self._logger = logger or BackupLogger(config.logs_path)
        self._locks = locks or ArtifactLocks()
        self._tokens: Set[CancelToken] = set()
        self._tokens_lock = threading.Lock()

    @classmethod
    def from_working_dir(
        cls,
        working_dir: Path,
        *,
        settings: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "BackupService":
        return cls(load_backup_config(working_dir, settings=settings, environ=environ))

    # ------------------------------------------------------------------
    @property
    def config(self) -> BackupConfig:
        return self._config

    @property
    def logger(self) -> BackupLogger:
        return self._logger

    @property
    def locks(self) -> ArtifactLocks:
        return self._locks

    def update_config(self, config: BackupConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def _operation(self, backup_type: BackupType, operation: str) -> Iterator[CancelToken]:
        token = CancelToken()
        with self._locks.hold(backup_type, operation):
            with self._tokens_lock:
                self._tokens.add(token)
            try:
                yield token
            finally:
                with self._tokens_lock:
                    self._tokens.discard(token)

    def cancel_running(self) -> int:
        """Ask every in-flight operation to stop; returns how many were signalled."""

        with self._tokens_lock:
            tokens = list(self._tokens)
        for token in tokens:
            token.cancel()
        if tokens:
            self._logger.warning("backup_cancel_requested", operations=len(tokens))
        return len(tokens)

    def _resolve_artifact(self, path: Path | str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute() and not candidate.exists():
            return self._config.storage.path / candidate
        return candidate

    # ------------------------------------------------------------------
    def create_database_backup(
        self,
        *,
        compression: Optional[bool] = None,
        storage_path: Optional[Path] = None,
    ) -> DatabaseBackupResult:
        config = self._config
        if compression is not None:
            config = dataclasses.replace(config, database=dataclasses.replace(config.database, compression=compression))
        if storage_path is not None:
            config = dataclasses.replace(config, storage=StorageSettings(path=Path(storage_path)))
        with self._operation("database", "database-backup") as token:
            return create_database_backup(config, logger=self._logger, cancel=token)

    def create_files_backup(self) -> FilesBackupResult:
        with self._operation("files", "files-backup") as token:
            return create_files_backup(self._config, logger=self._logger, cancel=token)

    def list_backups(self, backup_type: Optional[BackupType] = None) -> List[ArtifactInfo]:
        return list_artifacts(self._config.storage.path, backup_type)

    def verify_backup(self, path: Path | str, backup_type: Optional[BackupType] = None) -> VerificationResult:
        return verify_artifact(self._resolve_artifact(path), backup_type, logger=self._logger)

    def restore_database(self, path: Path | str) -> DatabaseRestoreResult:
        with self._operation("database", "restore-database"):
            return restore_database(self._config, self._resolve_artifact(path), logger=self._logger)

    def restore_files(self, path: Path | str, target_dir: Optional[Path | str] = None) -> FilesRestoreResult:
        target = Path(target_dir) if target_dir is not None else None
        with self._operation("files", "restore-files"):
            return restore_files(self._config, self._resolve_artifact(path), target, logger=self._logger)

    def cleanup(self, backup_type: Optional[BackupType] = None) -> List[CleanupResult]:
        kinds = (backup_type,) if backup_type else BACKUP_TYPES
        results: List[CleanupResult] = []
        for kind in kinds:
            try:
                with self._operation(kind, f"{kind}-cleanup"):
                    results.append(cleanup_backups(self._config, kind, logger=self._logger))
            except AlreadyRunningError as exc:
                if backup_type:
                    raise
                self._logger.warning("cleanup_skipped", type=kind, reason=str(exc))
                results.append(CleanupResult(backup_type=kind, errors=[str(exc)]))
        return results

    # ------------------------------------------------------------------
    def stats(self) -> Dict[str, Any]:
        items = list_artifacts(self._config.storage.path, with_metadata=False)
        per_type: Dict[str, Dict[str, Any]] = {}
        for kind in BACKUP_TYPES:
            subset = [item for item in items if item.type == kind]
            total = sum(item.size for item in subset)
            per_type[kind] = {
                "count": len(subset),
                "totalSize": total,
                "totalSizeFormatted": format_size(total),
                "newest": subset[0].created.isoformat() if subset else None,
                "oldest": subset[-1].created.isoformat() if subset else None,
            }
        total = sum(item.size for item in items)
        return {
            "storagePath": str(self._config.storage.path),
            "count": len(items),
            "totalSize": total,
            "totalSizeFormatted": format_size(total),
            "types": per_type,
        }

    def health(self) -> Dict[str, Any]:
        config = self._config
        storage = config.storage.path
        latest: Dict[str, Optional[str]] = {}
        for kind in BACKUP_TYPES:
            items = list_artifacts(storage, kind, with_metadata=False)
            latest[kind] = items[0].created.isoformat() if items else None
        database_path = config.database.path
        return {
            "storagePath": str(storage),
            "storageExists": storage.is_dir(),
            "databasePath": str(database_path) if database_path else None,
            "databaseExists": bool(database_path and database_path.exists()),
            "databaseEnabled": config.database.enabled,
            "filesEnabled": config.files.enabled,
            "latest": latest,
            "running": {kind: self._locks.holder(kind) for kind in BACKUP_TYPES},
        }


__all__ = ["BackupService"]
