"""Verify backup artifacts against their sidecars and archive structure."""
from __future__ import annotations

import re
import zipfile
from pathlib import Path
from typing import Optional

from core.db import SQLITE_HEADER

from .checksum import checksum, read_sidecar
from .errors import CorruptArchiveError, SidecarInvalidError
from .logs import BackupLogger
from .types import BackupType, VerificationResult

_SHA256_RE = re.compile(r"[0-9a-f]{64}")


def _fail(path: Path, code: str, message: str, *, checksum_match: Optional[bool] = None) -> VerificationResult:
    return VerificationResult(path=path, valid=False, checksum_match=checksum_match, error_code=code, message=message)


def _inspect_zip(path: Path, backup_type: Optional[BackupType]) -> int:
    try:
        with zipfile.ZipFile(path, "r") as archive:
            entries = [info for info in archive.infolist() if not info.is_dir()]
            bad = archive.testzip()
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as exc:
        raise CorruptArchiveError(f"archive cannot be opened: {exc}") from exc
    if bad is not None:
        raise CorruptArchiveError(f"archive entry {bad} failed its CRC check")
    if backup_type == "database" and not any(info.filename.endswith(".db") for info in entries):
        raise CorruptArchiveError("database archive holds no .db snapshot")
    return len(entries)


def _inspect_raw_db(path: Path) -> int:
    with path.open("rb") as handle:
        header = handle.read(len(SQLITE_HEADER))
    if header != SQLITE_HEADER:
        raise CorruptArchiveError("snapshot is not a SQLite database")
    return 1


def verify_artifact(
    path: Path,
    backup_type: Optional[BackupType] = None,
    *,
    logger: Optional[BackupLogger] = None,
) -> VerificationResult:
    """Check *path* and return a result; never raises for a bad artifact.

    Order: existence, size, sidecar checksum, archive structure. A missing
    sidecar still yields ``valid=True`` with ``checksum_match=None``;
    a sidecar without a usable checksum is ``sidecar_invalid``.
    """

    path = Path(path)
    result = _verify(path, backup_type)
    if logger is not None:
        logger.event(
            event="backup_verified",
            phase="verify",
            ok=result.valid,
            path=str(path),
            checksum_match=result.checksum_match,
            error=result.error_code,
        )
    return result


def _verify(path: Path, backup_type: Optional[BackupType]) -> VerificationResult:
    if not path.exists() or not path.is_file():
        return _fail(path, "not_found", f"Backup file not found: {path}")
    if path.stat().st_size == 0:
        return _fail(path, "empty", f"Backup file is empty: {path}")

    try:
        sidecar = read_sidecar(path)
    except SidecarInvalidError as exc:
        return _fail(path, SidecarInvalidError.code, str(exc))

    if sidecar is not None and backup_type is not None and sidecar.type != backup_type:
        return _fail(path, "verification_failed", f"sidecar describes a {sidecar.type} backup, expected {backup_type}")

    checksum_match: Optional[bool] = None
    if sidecar is not None:
        if not _SHA256_RE.fullmatch(sidecar.checksum or ""):
            return _fail(path, SidecarInvalidError.code, "sidecar carries no valid SHA-256 checksum")
        checksum_match = checksum(path) == sidecar.checksum
        if not checksum_match:
            return _fail(
                path,
                "checksum_mismatch",
                "Checksum mismatch - backup may be corrupted",
                checksum_match=False,
            )

    kind = backup_type or (sidecar.type if sidecar is not None else None)
    try:
        if path.suffix == ".zip":
            file_count = _inspect_zip(path, kind)
        else:
            file_count = _inspect_raw_db(path)
    except CorruptArchiveError as exc:
        return _fail(path, CorruptArchiveError.code, str(exc), checksum_match=checksum_match)

    return VerificationResult(path=path, valid=True, checksum_match=checksum_match, file_count=file_count)


__all__ = ["verify_artifact"]
