"""File tree archiver."""
from __future__ import annotations

import fnmatch
import os
import time
import zipfile
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Tuple

from .artifacts import allocate_artifact_path, format_size, partial_path, sidecar_path
from .checksum import checksum, write_sidecar
from .config import BackupConfig
from .errors import BackupCancelledError, BackupError, BackupIOError, SourceUnavailableError
from .locks import CancelToken
from .logs import BackupLogger
from .types import FilesBackupResult, FilesSidecar

_COMPRESSION_LEVEL = 6


def is_excluded(relative: str, patterns: Sequence[str], *, root_relative: Optional[str] = None) -> bool:
    """Return ``True`` when *relative* (POSIX, relative to its directory) matches any glob.

    The basename, the path itself, the path relative to the files root and
    each single component are all tested.
    """

    if not patterns:
        return False
    pure = PurePosixPath(relative)
    candidates = {pure.name, relative, *pure.parts}
    if root_relative:
        candidates.add(root_relative)
    return any(fnmatch.fnmatch(candidate, pattern) for candidate in candidates for pattern in patterns)


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def _walk(directory: Path, patterns: Sequence[str], root: Path) -> Iterable[Path]:
    for current, dirnames, filenames in os.walk(directory):
        current_path = Path(current)
        dirnames[:] = sorted(
            name
            for name in dirnames
            if not _is_hidden(name) and not any(fnmatch.fnmatch(name, pattern) for pattern in patterns)
        )
        for name in sorted(filenames):
            if _is_hidden(name):
                continue
            candidate = current_path / name
            relative = candidate.relative_to(directory).as_posix()
            if is_excluded(relative, patterns, root_relative=_root_relative(candidate, root)):
                continue
            yield candidate


def _root_relative(path: Path, root: Path) -> Optional[str]:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return None


def _entry_name(path: Path, directory: Path, root: Path) -> str:
    relative = _root_relative(path, root)
    if relative is not None:
        return relative
    return f"{directory.name}/{path.relative_to(directory).as_posix()}"


def collect_files(config: BackupConfig, *, logger: BackupLogger) -> Tuple[List[Tuple[Path, str]], List[str], List[str]]:
    """Walk the configured directories.

    Returns ``(files, present, missing)`` where ``files`` is a sorted,
    de-duplicated list of ``(path, entry_name)`` pairs.
    """

    root = config.files.root
    patterns = list(config.files.exclusions)
    present: List[str] = []
    missing: List[str] = []
    found: dict[str, Path] = {}
    for name in config.files.directories:
        directory = Path(name)
        if not directory.is_absolute():
            directory = root / directory
        if not directory.is_dir():
            logger.warning("files_directory_missing", directory=str(directory))
            missing.append(name)
            continue
        present.append(name)
        for path in _walk(directory, patterns, root):
            found.setdefault(_entry_name(path, directory, root), path)
    files = sorted(((path, entry) for entry, path in found.items()), key=lambda item: item[1])
    return files, present, missing


def _discard(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            continue


def create_files_backup(
    config: BackupConfig,
    *,
    logger: BackupLogger,
    cancel: Optional[CancelToken] = None,
) -> FilesBackupResult:
    """Archive the configured directories into a new ZIP artifact plus sidecar.

    Files that vanish or cannot be read between the walk and the archive step
    are skipped and listed in ``skippedFiles``; the backup still succeeds.
    """

    started = time.monotonic()
    timestamp = datetime.now()
    files, present, missing = collect_files(config, logger=logger)
    if config.files.directories and not present:
        raise SourceUnavailableError(
            "None of the configured directories exist: " + ", ".join(config.files.directories)
        )
    if not files:
        logger.warning("files_backup_empty", directories=present)

    storage = config.storage.path
    try:
        storage.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise BackupIOError(f"Cannot create backup directory {storage}: {exc}") from exc

    artifact = allocate_artifact_path(storage, "files", "zip", timestamp)
    partial = partial_path(artifact)
    compression = zipfile.ZIP_DEFLATED if config.files.compression else zipfile.ZIP_STORED
    logger.event(event="files_backup_start", phase="create", ok=True, artifact=artifact.name, candidates=len(files))

    archived = 0
    total_size = 0
    skipped: List[str] = []
    try:
        with zipfile.ZipFile(partial, "w", compression=compression, compresslevel=_COMPRESSION_LEVEL) as archive:
            for path, entry in files:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    size = path.stat().st_size
                    archive.write(path, entry)
                except OSError as exc:
                    logger.warning("files_backup_skip", path=str(path), error=str(exc))
                    skipped.append(entry)
                    continue
                archived += 1
                total_size += size
        if files and archived == 0:
            raise BackupIOError(f"None of the {len(files)} collected files could be read")
        os.replace(partial, artifact)
        size = artifact.stat().st_size
        digest = checksum(artifact)
        metadata = FilesSidecar(
            timestamp=timestamp,
            backup_path=artifact,
            checksum=digest,
            directories=list(config.files.directories),
            exclusions=list(config.files.exclusions),
            file_count=archived,
            total_size=total_size,
            skipped_files=skipped,
        )
        write_sidecar(artifact, metadata)
    except BackupCancelledError:
        _discard(partial, artifact, sidecar_path(artifact))
        logger.warning("files_backup_cancelled", artifact=artifact.name, archived=archived)
        raise
    except BackupError as exc:
        _discard(partial, artifact, sidecar_path(artifact))
        logger.event(event="files_backup_failed", phase="create", ok=False, error=str(exc))
        raise
    except (OSError, zipfile.BadZipFile) as exc:
        _discard(partial, artifact, sidecar_path(artifact))
        logger.event(event="files_backup_failed", phase="create", ok=False, error=str(exc))
        raise BackupIOError(f"Files backup failed: {exc}") from exc

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.event(
        event="files_backup_complete",
        phase="create",
        ok=True,
        artifact=str(artifact),
        size=format_size(size),
        files=archived,
        skipped=len(skipped),
        duration_ms=duration_ms,
    )
    return FilesBackupResult(
        artifact_path=artifact,
        size=size,
        file_count=archived,
        total_size=total_size,
        duration_ms=duration_ms,
        metadata=metadata,
        skipped=skipped,
        missing_directories=missing,
    )


__all__ = ["collect_files", "create_files_backup", "is_excluded"]
