"""Cron scheduling for backup and cleanup jobs."""

from .registry import JobRegistry, JobSpec, build_default_registry
from .scheduler import BackupScheduler, JobRunOutcome, JobStatus

__all__ = [
    "BackupScheduler",
    "JobRegistry",
    "JobRunOutcome",
    "JobSpec",
    "JobStatus",
    "build_default_registry",
]
