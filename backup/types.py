"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from .errors import VERIFICATION_ERRORS, BackupVerificationError

BackupType = Literal["database", "files"]
BACKUP_TYPES: tuple[BackupType, ...] = ("database", "files")
SIDECAR_VERSION = "1.0"


def _iso(value: datetime) -> str:
    return value.isoformat()


@dataclass(slots=True)
class DatabaseSidecar:
    timestamp: datetime
    backup_path: Path
    checksum: str
    tables: List[str]
    record_counts: Dict[str, int]
    version: str = SIDECAR_VERSION
    type: BackupType = "database"

    def to_json(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "type": self.type,
            "version": self.version,
            "backupPath": str(self.backup_path),
            "checksum": self.checksum,
            "tables": list(self.tables),
            "recordCounts": dict(self.record_counts),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "DatabaseSidecar":
        return cls(
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
            backup_path=Path(str(data["backupPath"])),
            checksum=str(data.get("checksum") or ""),
            tables=[str(item) for item in data.get("tables") or []],
            record_counts={str(k): int(v) for k, v in (data.get("recordCounts") or {}).items()},
            version=str(data.get("version") or SIDECAR_VERSION),
        )


@dataclass(slots=True)
class FilesSidecar:
    timestamp: datetime
    backup_path: Path
    checksum: str
    directories: List[str]
    exclusions: List[str]
    file_count: int
    total_size: int
    skipped_files: List[str] = field(default_factory=list)
    version: str = SIDECAR_VERSION
    type: BackupType = "files"

    def to_json(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "type": self.type,
            "version": self.version,
            "backupPath": str(self.backup_path),
            "checksum": self.checksum,
            "directories": list(self.directories),
            "exclusions": list(self.exclusions),
            "fileCount": self.file_count,
            "totalSize": self.total_size,
            "skippedFiles": list(self.skipped_files),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "FilesSidecar":
        return cls(
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
            backup_path=Path(str(data["backupPath"])),
            checksum=str(data.get("checksum") or ""),
            directories=[str(item) for item in data.get("directories") or []],
            exclusions=[str(item) for item in data.get("exclusions") or []],
            file_count=int(data.get("fileCount") or 0),
            total_size=int(data.get("totalSize") or 0),
            skipped_files=[str(item) for item in data.get("skippedFiles") or []],
            version=str(data.get("version") or SIDECAR_VERSION),
        )


Sidecar = Union[DatabaseSidecar, FilesSidecar]


@dataclass(slots=True)
class ArtifactInfo:
    """Artifact found in the storage directory."""

    path: Path
    name: str
    type: BackupType
    size: int
    created: datetime
    metadata: Optional[Sidecar] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "name": self.name,
            "type": self.type,
            "size": self.size,
            "created": _iso(self.created),
            "metadata": self.metadata.to_json() if self.metadata else None,
        }


@dataclass(slots=True)
class DatabaseBackupResult:
    artifact_path: Path
    size: int
    duration_ms: int
    metadata: DatabaseSidecar

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": True,
            "backupPath": str(self.artifact_path),
            "size": self.size,
            "duration": self.duration_ms,
            "metadata": self.metadata.to_json(),
        }


@dataclass(slots=True)
class FilesBackupResult:
    artifact_path: Path
    size: int
    file_count: int
    total_size: int
    duration_ms: int
    metadata: FilesSidecar
    skipped: List[str] = field(default_factory=list)
    missing_directories: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": True,
            "backupPath": str(self.artifact_path),
            "size": self.size,
            "fileCount": self.file_count,
            "totalSize": self.total_size,
            "duration": self.duration_ms,
            "skipped": list(self.skipped),
            "missingDirectories": list(self.missing_directories),
            "metadata": self.metadata.to_json(),
        }


@dataclass(slots=True)
class CleanupResult:
    backup_type: BackupType
    deleted_count: int = 0
    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": self.backup_type,
            "deletedCount": self.deleted_count,
            "deleted": list(self.deleted),
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class VerificationResult:
    path: Path
    valid: bool
    checksum_match: Optional[bool] = None
    file_count: Optional[int] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    def raise_for_error(self) -> "VerificationResult":
        if self.valid:
            return self
        error_cls = VERIFICATION_ERRORS.get(self.error_code or "", BackupVerificationError)
        raise error_cls(self.message or f"verification failed for {self.path}")

    def to_json(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "valid": self.valid,
            "checksumMatch": self.checksum_match,
            "fileCount": self.file_count,
            "error": self.error_code,
            "message": self.message,
        }


@dataclass(slots=True)
class DatabaseRestoreResult:
    success: bool
    requires_process_restart: bool
    restored_from: Path
    safety_copy: Optional[Path] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "requiresProcessRestart": self.requires_process_restart,
            "restoredFrom": str(self.restored_from),
            "safetyCopy": str(self.safety_copy) if self.safety_copy else None,
        }


@dataclass(slots=True)
class FilesRestoreResult:
    success: bool
    extracted_files: int
    target_dir: Path
    skipped: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "extractedFiles": self.extracted_files,
            "targetDirectory": str(self.target_dir),
            "skipped": list(self.skipped),
        }


__all__ = [
    "ArtifactInfo",
    "BACKUP_TYPES",
    "BackupType",
    "CleanupResult",
    "DatabaseBackupResult",
    "DatabaseRestoreResult",
    "DatabaseSidecar",
    "FilesBackupResult",
    "FilesRestoreResult",
    "FilesSidecar",
    "SIDECAR_VERSION",
    "Sidecar",
    "VerificationResult",
]
