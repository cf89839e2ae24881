"""Restore backups safely with automatic rollback."""
from __future__ import annotations

import os
import shutil
import sqlite3
import zipfile
import zlib
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import List, Optional

from core.db import backup_sqlite, connect, quick_check

from .config import BackupConfig
from .errors import BackupError, BackupRestoreError, CorruptArchiveError, SourceUnavailableError
from .logs import BackupLogger
from .types import DatabaseRestoreResult, FilesRestoreResult
from .verify import verify_artifact

_SAFETY_DIR = "_safety"
_SQLITE_SIDE_FILES = ("-wal", "-shm")


def _check_snapshot(path: Path) -> None:
    conn = connect(path, read_only=True)
    try:
        problem = quick_check(conn)
    finally:
        conn.close()
    if problem:
        raise BackupRestoreError(f"quick_check failed for {path.name}: {problem}")


def _extract_snapshot(artifact: Path, dest: Path) -> None:
    if artifact.suffix != ".zip":
        shutil.copyfile(artifact, dest)
        return
    with zipfile.ZipFile(artifact, "r") as archive:
        entries = [info for info in archive.infolist() if info.filename.endswith(".db")]
        if not entries:
            raise CorruptArchiveError(f"{artifact.name} holds no .db snapshot")
        with archive.open(entries[0], "r") as src, dest.open("wb") as dst:
            shutil.copyfileobj(src, dst)


def _drop_side_files(live: Path) -> None:
    for suffix in _SQLITE_SIDE_FILES:
        Path(f"{live}{suffix}").unlink(missing_ok=True)


def _rollback(live: Path, safety: Optional[Path], *, logger: BackupLogger) -> bool:
    if safety is None:
        try:
            live.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("restore_rollback_failed", path=str(live), error=str(exc))
            return False
        return True
    try:
        shutil.copy2(safety, live)
        _drop_side_files(live)
    except OSError as exc:
        logger.error("restore_rollback_failed", path=str(live), safety=str(safety), error=str(exc))
        return False
    logger.warning("restore_rolled_back", path=str(live), safety=str(safety))
    return True


def restore_database(config: BackupConfig, artifact_path: Path, *, logger: BackupLogger) -> DatabaseRestoreResult:
    """Replace the live SQLite file with the snapshot held in *artifact_path*.

    The live file is only touched after the snapshot passed verification and
    ``quick_check``. A safety copy of the live file is kept under
    ``<storage>/_safety`` and used to roll back if the swap fails. The host
    must reopen its connections afterwards.
    """

    artifact = Path(artifact_path)
    verify_artifact(artifact, "database", logger=logger).raise_for_error()
    live = config.database.path
    if live is None:
        raise SourceUnavailableError("No database path configured; nothing to restore into")

    logger.event(event="restore_start", phase="restore", ok=True, type="database", artifact=str(artifact))
    staging = live.with_name(f"{live.name}.restore-{os.getpid()}")
    safety: Optional[Path] = None
    try:
        live.parent.mkdir(parents=True, exist_ok=True)
        _extract_snapshot(artifact, staging)
        _check_snapshot(staging)
        if live.exists():
            safety_dir = config.storage.path / _SAFETY_DIR
            safety_dir.mkdir(parents=True, exist_ok=True)
            safety = safety_dir / f"{live.name}.{datetime.now().strftime('%Y%m%d-%H%M%S')}"
            logger.info("restore_safety_copy", source=str(live), dest=str(safety))
            backup_sqlite(live, safety)
    except BackupError as exc:
        staging.unlink(missing_ok=True)
        logger.error("restore_failed", type="database", error=str(exc))
        raise
    except (OSError, sqlite3.Error, zipfile.BadZipFile, zlib.error) as exc:
        staging.unlink(missing_ok=True)
        logger.error("restore_failed", type="database", error=str(exc))
        raise BackupRestoreError(f"Database restore failed before swap: {exc}") from exc

    try:
        os.replace(staging, live)
        _drop_side_files(live)
        _check_snapshot(live)
    except (OSError, sqlite3.Error, BackupError) as exc:
        staging.unlink(missing_ok=True)
        rolled_back = _rollback(live, safety, logger=logger)
        logger.event(event="restore_failed", phase="restore", ok=False, type="database", error=str(exc))
        raise BackupRestoreError(
            f"Database restore failed during swap: {exc}",
            rolled_back=rolled_back,
            store_consistent=rolled_back,
        ) from exc

    logger.event(
        event="backup_restored",
        phase="restore",
        ok=True,
        type="database",
        artifact=str(artifact),
        safety_copy=str(safety) if safety else None,
    )
    return DatabaseRestoreResult(
        success=True,
        requires_process_restart=True,
        restored_from=artifact,
        safety_copy=safety,
    )


def _safe_destination(target: Path, name: str) -> Optional[Path]:
    pure = PurePosixPath(name.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or not pure.parts:
        return None
    dest = (target / Path(*pure.parts)).resolve()
    try:
        dest.relative_to(target)
    except ValueError:
        return None
    return dest


def _extract_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(f".{dest.name}.restore-tmp")
    try:
        with archive.open(info, "r") as src, tmp.open("wb") as dst:
            shutil.copyfileobj(src, dst)
        os.replace(tmp, dest)
    finally:
        tmp.unlink(missing_ok=True)


def restore_files(
    config: BackupConfig,
    artifact_path: Path,
    target_dir: Optional[Path] = None,
    *,
    logger: BackupLogger,
) -> FilesRestoreResult:
    """Extract a files archive into *target_dir* (default: the files root).

    Each file is written to a temp name and renamed into place. Entries that
    would escape the target or fail their CRC are skipped and reported.
    """

    artifact = Path(artifact_path)
    result = verify_artifact(artifact, "files", logger=logger)
    # only archive damage passes here; sidecar and checksum failures raise
    if not result.valid and result.error_code != CorruptArchiveError.code:
        result.raise_for_error()
    target = Path(target_dir) if target_dir is not None else config.files.root
    target.mkdir(parents=True, exist_ok=True)
    target = target.resolve()

    logger.event(event="restore_start", phase="restore", ok=True, type="files", artifact=str(artifact), target=str(target))
    extracted = 0
    skipped: List[str] = []
    try:
        archive = zipfile.ZipFile(artifact, "r")
    except (zipfile.BadZipFile, OSError) as exc:
        logger.error("restore_failed", type="files", error=str(exc))
        raise CorruptArchiveError(f"archive cannot be opened: {exc}") from exc
    with archive:
        for info in archive.infolist():
            dest = _safe_destination(target, info.filename)
            if dest is None:
                logger.warning("restore_entry_unsafe", entry=info.filename)
                skipped.append(info.filename)
                continue
            if info.is_dir():
                dest.mkdir(parents=True, exist_ok=True)
                continue
            try:
                _extract_entry(archive, info, dest)
            except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
                logger.warning("restore_entry_corrupt", entry=info.filename, error=str(exc))
                skipped.append(info.filename)
                continue
            except OSError as exc:
                logger.warning("restore_entry_failed", entry=info.filename, error=str(exc))
                skipped.append(info.filename)
                continue
            extracted += 1

    logger.event(
        event="backup_restored",
        phase="restore",
        ok=True,
        type="files",
        artifact=str(artifact),
        extracted=extracted,
        skipped=len(skipped),
    )
    return FilesRestoreResult(success=True, extracted_files=extracted, target_dir=target, skipped=skipped)


__all__ = ["restore_database", "restore_files"]
