"""Database snapshot producer."""
from __future__ import annotations

import os
import sqlite3
import time
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from core.db import backup_sqlite, connect, count_rows, list_tables, quick_check

from .artifacts import allocate_artifact_path, format_size, partial_path, sidecar_path
from .checksum import checksum, write_sidecar
from .config import BackupConfig
from .errors import BackupCancelledError, BackupError, BackupIOError, SourceUnavailableError
from .locks import CancelToken
from .logs import BackupLogger
from .types import DatabaseBackupResult, DatabaseSidecar

_BACKUP_STEP_PAGES = 256
_COMPRESSION_LEVEL = 9


def resolve_database_path(config: BackupConfig) -> Path:
    path = config.database.path
    if path is None:
        raise SourceUnavailableError("No database path configured (backup.database.path or DATABASE_URL)")
    if not path.exists():
        raise SourceUnavailableError(f"Database file not found: {path}")
    return path


def _discard(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            continue


def _snapshot(source: Path, dest: Path, *, cancel: Optional[CancelToken], logger: BackupLogger) -> None:
    def _progress(status: int, remaining: int, total: int) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()

    logger.info("copy_sqlite", source=str(source), dest=str(dest))
    backup_sqlite(source, dest, pages=_BACKUP_STEP_PAGES, progress=_progress)


def _inspect_snapshot(snapshot: Path) -> tuple[list[str], dict[str, int]]:
    conn = connect(snapshot, read_only=True)
    try:
        problem = quick_check(conn)
        if problem:
            raise BackupIOError(f"snapshot failed quick_check: {problem}")
        tables = list_tables(conn)
        return tables, count_rows(conn, tables)
    finally:
        conn.close()


def _compress(snapshot: Path, output: Path, *, arcname: str) -> None:
    with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=_COMPRESSION_LEVEL) as archive:
        archive.write(snapshot, arcname)


def create_database_backup(
    config: BackupConfig,
    *,
    logger: BackupLogger,
    cancel: Optional[CancelToken] = None,
) -> DatabaseBackupResult:
    """Snapshot the live SQLite store into a new artifact plus sidecar.

    Partial output is removed on any failure; nothing is retried here.
    """

    started = time.monotonic()
    timestamp = datetime.now()
    source = resolve_database_path(config)
    storage = config.storage.path
    try:
        storage.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise BackupIOError(f"Cannot create backup directory {storage}: {exc}") from exc

    extension = "db.zip" if config.database.compression else "db"
    artifact = allocate_artifact_path(storage, "database", extension, timestamp)
    partial = partial_path(artifact)
    snapshot = artifact.with_name(artifact.name + ".snapshot")
    logger.event(event="database_backup_start", phase="create", ok=True, artifact=artifact.name, source=str(source))

    try:
        if cancel is not None:
            cancel.raise_if_cancelled()
        _snapshot(source, snapshot, cancel=cancel, logger=logger)
        tables, record_counts = _inspect_snapshot(snapshot)
        if cancel is not None:
            cancel.raise_if_cancelled()
        if config.database.compression:
            raw_size = snapshot.stat().st_size
            _compress(snapshot, partial, arcname=artifact.name[: -len(".zip")])
            logger.debug(
                "database_backup_compressed",
                original_size=format_size(raw_size),
                compressed_size=format_size(partial.stat().st_size),
            )
        else:
            os.replace(snapshot, partial)
        os.replace(partial, artifact)
        size = artifact.stat().st_size
        digest = checksum(artifact)
        metadata = DatabaseSidecar(
            timestamp=timestamp,
            backup_path=artifact,
            checksum=digest,
            tables=tables,
            record_counts=record_counts,
        )
        write_sidecar(artifact, metadata)
    except BackupCancelledError:
        _discard(partial, artifact, sidecar_path(artifact))
        logger.warning("database_backup_cancelled", artifact=artifact.name)
        raise
    except BackupError as exc:
        _discard(partial, artifact, sidecar_path(artifact))
        logger.event(event="database_backup_failed", phase="create", ok=False, error=str(exc))
        raise
    except (OSError, sqlite3.Error, zipfile.BadZipFile) as exc:
        _discard(partial, artifact, sidecar_path(artifact))
        logger.event(event="database_backup_failed", phase="create", ok=False, error=str(exc))
        raise BackupIOError(f"Database backup failed: {exc}") from exc
    finally:
        _discard(snapshot)

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.event(
        event="database_backup_complete",
        phase="create",
        ok=True,
        artifact=str(artifact),
        size=format_size(size),
        duration_ms=duration_ms,
        tables=len(tables),
        records=sum(record_counts.values()),
    )
    return DatabaseBackupResult(artifact_path=artifact, size=size, duration_ms=duration_ms, metadata=metadata)


__all__ = ["create_database_backup", "resolve_database_path"]
