"""Job registry describing scheduled backup workloads."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict

from backup.api import BackupService
from backup.config import BackupConfig

RunnerFn = Callable[[BackupService], Any]
ScheduleFn = Callable[[BackupConfig], str]
EnabledFn = Callable[[BackupConfig], bool]


def _always(config: BackupConfig) -> bool:
    return True


@dataclass(slots=True)
class JobSpec:
    name: str
    description: str
    runner: RunnerFn
    schedule: ScheduleFn
    enabled: EnabledFn = _always


class JobRegistry:
    """Authoritative registry for scheduled job names."""

    def __init__(self) -> None:
        self._jobs: Dict[str, JobSpec] = {}

    def register(self, spec: JobSpec) -> None:
        if spec.name in self._jobs:
            raise ValueError(f"Job already registered: {spec.name}")
        self._jobs[spec.name] = spec

    def all_specs(self) -> Dict[str, JobSpec]:
        return dict(self._jobs)


# ----------------------------------------------------------------------
# Default runner implementations
# ----------------------------------------------------------------------

def _database_backup(service: BackupService) -> Any:
    return service.create_database_backup()


def _files_backup(service: BackupService) -> Any:
    return service.create_files_backup()


def _database_cleanup(service: BackupService) -> Any:
    return service.cleanup("database")[0]


def _files_cleanup(service: BackupService) -> Any:
    return service.cleanup("files")[0]


def build_default_registry() -> JobRegistry:
    registry = JobRegistry()

    registry.register(
        JobSpec(
            name="database-backup",
            description="Snapshot the SQLite store",
            runner=_database_backup,
            schedule=lambda config: config.database.schedule,
            enabled=lambda config: config.database.enabled,
        )
    )

    registry.register(
        JobSpec(
            name="files-backup",
            description="Archive the configured directories",
            runner=_files_backup,
            schedule=lambda config: config.files.schedule,
            enabled=lambda config: config.files.enabled,
        )
    )

    registry.register(
        JobSpec(
            name="database-cleanup",
            description="Delete expired database artifacts",
            runner=_database_cleanup,
            schedule=lambda config: config.cleanup.database_schedule,
        )
    )

    registry.register(
        JobSpec(
            name="files-cleanup",
            description="Delete expired files artifacts",
            runner=_files_cleanup,
            schedule=lambda config: config.cleanup.files_schedule,
        )
    )

    return registry


__all__ = ["JobRegistry", "JobSpec", "build_default_registry"]
