"""Per-artifact-type exclusion and cooperative cancellation."""
from __future__ import annotations

import contextlib
import threading
from typing import Dict, Iterator, Optional

from .errors import AlreadyRunningError, BackupCancelledError, RestoreConflictError
from .types import BACKUP_TYPES, BackupType


class CancelToken:
    """Cancellation flag checked by producers between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise BackupCancelledError("operation cancelled by host")


class ArtifactLocks:
    """One non-blocking lock per artifact type.

    Backups, cleanups and restores of a type all take the same lock, so a
    restore never overlaps a producer or another restore of that type.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {name: threading.Lock() for name in BACKUP_TYPES}
        self._holders: Dict[str, Optional[str]] = {name: None for name in BACKUP_TYPES}
        self._guard = threading.Lock()

    def holder(self, backup_type: BackupType) -> Optional[str]:
        with self._guard:
            return self._holders[backup_type]

    @contextlib.contextmanager
    def hold(self, backup_type: BackupType, operation: str) -> Iterator[None]:
        lock = self._locks[backup_type]
        if not lock.acquire(blocking=False):
            holder = self.holder(backup_type)
            if operation.startswith("restore"):
                raise RestoreConflictError(
                    f"cannot {operation}: {backup_type} artifacts are locked by {holder or 'another operation'}",
                    holder=holder,
                )
            raise AlreadyRunningError(f"{backup_type} {holder or 'operation'} already running; {operation} dropped")
        with self._guard:
            self._holders[backup_type] = operation
        try:
            yield
        finally:
            with self._guard:
                self._holders[backup_type] = None
            lock.release()


__all__ = ["ArtifactLocks", "CancelToken"]
