"""Error hierarchy for backup operations."""
from __future__ import annotations

from typing import Any, Dict, Optional


class BackupError(RuntimeError):
    """Base exception for backup related failures.

    ``rolled_back`` tells callers whether partial output was removed and
    ``store_consistent`` whether the live data store is still usable.
    """

    code = "backup_error"

    def __init__(
        self,
        message: str,
        *,
        rolled_back: bool = True,
        store_consistent: bool = True,
    ) -> None:
        super().__init__(message)
        self.rolled_back = rolled_back
        self.store_consistent = store_consistent

    def to_json(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "what": str(self),
            "rolled_back": self.rolled_back,
            "store_consistent": self.store_consistent,
        }


class ConfigInvalidError(BackupError):
    """Raised at startup when the backup configuration cannot be used."""

    code = "config_invalid"


class SourceUnavailableError(BackupError):
    """Raised when no configured source (database file, directory) can be read."""

    code = "source_unavailable"


class BackupIOError(BackupError):
    """Raised when writing an artifact fails; partial output has been deleted."""

    code = "io_failure"


class BackupCancelledError(BackupError):
    """Raised when the host cancels an in-flight operation."""

    code = "cancelled"


class AlreadyRunningError(BackupError):
    """Raised when an operation for the same artifact type is already in flight."""

    code = "already_running"


class RestoreConflictError(BackupError):
    """Raised when a restore cannot take the exclusive lock for its artifact type."""

    code = "restore_conflict"

    def __init__(self, message: str, *, holder: Optional[str] = None) -> None:
        super().__init__(message)
        self.holder = holder


class UnknownJobError(BackupError):
    """Raised for scheduler operations naming a job that is not registered."""

    code = "unknown_job"


class BackupVerificationError(BackupError):
    """Raised when verification of an artifact fails."""

    code = "verification_failed"


class ArtifactNotFoundError(BackupVerificationError):
    code = "not_found"


class EmptyArtifactError(BackupVerificationError):
    code = "empty"


class CorruptArchiveError(BackupVerificationError):
    code = "corrupt_archive"


class ChecksumMismatchError(BackupVerificationError):
    code = "checksum_mismatch"


class SidecarInvalidError(BackupVerificationError):
    """Raised when a sidecar exists but cannot vouch for its artifact."""

    code = "sidecar_invalid"


class BackupRestoreError(BackupError):
    """Raised when restoring an artifact fails."""

    code = "restore_failed"


VERIFICATION_ERRORS = {
    ArtifactNotFoundError.code: ArtifactNotFoundError,
    EmptyArtifactError.code: EmptyArtifactError,
    CorruptArchiveError.code: CorruptArchiveError,
    ChecksumMismatchError.code: ChecksumMismatchError,
    SidecarInvalidError.code: SidecarInvalidError,
}


__all__ = [
    "AlreadyRunningError",
    "ArtifactNotFoundError",
    "BackupCancelledError",
    "BackupError",
    "BackupIOError",
    "BackupRestoreError",
    "BackupVerificationError",
    "ChecksumMismatchError",
    "ConfigInvalidError",
    "CorruptArchiveError",
    "EmptyArtifactError",
    "RestoreConflictError",
    "SidecarInvalidError",
    "SourceUnavailableError",
    "UnknownJobError",
    "VERIFICATION_ERRORS",
]
