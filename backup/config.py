"""Backup configuration model, defaults and eager validation."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from apscheduler.triggers.cron import CronTrigger

from core.settings import load_settings, merge_defaults

from .errors import ConfigInvalidError

LOGGER = logging.getLogger("backupengine.config")

__all__ = [
    "BackupConfig",
    "CleanupSettings",
    "DEFAULT_BACKUP_SETTINGS",
    "DatabaseSettings",
    "FilesSettings",
    "NotificationSettings",
    "RetentionTiers",
    "StorageSettings",
    "apply_env_overrides",
    "load_backup_config",
    "validate_cron",
]


DEFAULT_BACKUP_SETTINGS: Dict[str, Any] = {
    "database": {
        "enabled": True,
        "schedule": "0 2 * * *",
        "path": None,
        "retention": {
            "daily": 7,
            "weekly": 4,
            "monthly": 12,
            "tiered": False,
        },
        "compression": True,
    },
    "files": {
        "enabled": True,
        "schedule": "0 3 * * 0",
        "root": None,
        "directories": ["uploads", "logs", "config"],
        "exclusions": ["*.log", "*.tmp", "node_modules", ".git", "coverage", "dist"],
        "compression": True,
        "retention_days": None,
    },
    "storage": {
        "path": None,
    },
    "notifications": {
        "enabled": True,
        "on_success": False,
        "on_failure": True,
        "email": None,
        "webhook": None,
    },
    "cleanup": {
        "database_schedule": "0 1 * * *",
        "files_schedule": "30 1 * * *",
    },
    "timezone": "Europe/Rome",
    "log_dir": None,
}


def validate_cron(expression: str, *, timezone: Optional[str] = None) -> CronTrigger:
    """Parse a five-field cron expression, raising ``ConfigInvalidError`` when invalid."""

    try:
        return CronTrigger.from_crontab(str(expression), timezone=timezone)
    except (ValueError, TypeError) as exc:
        raise ConfigInvalidError(f"Invalid cron expression {expression!r}: {exc}") from exc


@dataclass(frozen=True, slots=True)
class RetentionTiers:
    daily: int = 7
    weekly: int = 4
    monthly: int = 12
    tiered: bool = False


@dataclass(frozen=True, slots=True)
class DatabaseSettings:
    enabled: bool = True
    schedule: str = "0 2 * * *"
    path: Optional[Path] = None
    retention: RetentionTiers = field(default_factory=RetentionTiers)
    compression: bool = True


@dataclass(frozen=True, slots=True)
class FilesSettings:
    enabled: bool = True
    schedule: str = "0 3 * * 0"
    root: Path = field(default_factory=Path.cwd)
    directories: Tuple[str, ...] = ("uploads", "logs", "config")
    exclusions: Tuple[str, ...] = ("*.log", "*.tmp", "node_modules", ".git", "coverage", "dist")
    compression: bool = True
    retention_days: Optional[int] = None


@dataclass(frozen=True, slots=True)
class StorageSettings:
    path: Path


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    enabled: bool = True
    on_success: bool = False
    on_failure: bool = True
    email: Optional[str] = None
    webhook: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CleanupSettings:
    database_schedule: str = "0 1 * * *"
    files_schedule: str = "30 1 * * *"


@dataclass(frozen=True, slots=True)
class BackupConfig:
    """Process-wide backup configuration.

    Instances are immutable; a reload builds a new instance and hands it to
    the scheduler.
    """

    database: DatabaseSettings
    files: FilesSettings
    storage: StorageSettings
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    cleanup: CleanupSettings = field(default_factory=CleanupSettings)
    timezone: str = "Europe/Rome"
    log_dir: Optional[Path] = None

    # ------------------------------------------------------------------
    @property
    def storage_path(self) -> Path:
        return self.storage.path

    @property
    def logs_path(self) -> Path:
        if self.log_dir is not None:
            return self.log_dir
        return self.storage.path.parent / "logs"

    def files_retention_days(self) -> int:
        if self.files.retention_days is not None:
            return int(self.files.retention_days)
        # Files artifacts share the database daily tier unless configured.
        return int(self.database.retention.daily)

    # ------------------------------------------------------------------
    @classmethod
    def from_settings(cls, payload: Mapping[str, Any], *, working_dir: Optional[Path] = None) -> "BackupConfig":
        base = Path(working_dir) if working_dir is not None else Path.cwd()
        section = merge_defaults(dict(payload or {}), DEFAULT_BACKUP_SETTINGS)
        db = section["database"]
        files = section["files"]
        retention = db.get("retention") or {}
        notifications = section["notifications"]
        cleanup = section["cleanup"]

        def _path(value: Any, default: Path) -> Path:
            if value in (None, ""):
                return default
            candidate = Path(os.path.expandvars(os.path.expanduser(str(value))))
            if not candidate.is_absolute():
                candidate = base / candidate
            return candidate

        storage_path = _path(section["storage"].get("path"), base / "backups")
        db_path = db.get("path")
        files_retention = files.get("retention_days")
        try:
            return cls(
                database=DatabaseSettings(
                    enabled=bool(db.get("enabled", True)),
                    schedule=str(db.get("schedule", "0 2 * * *")).strip(),
                    path=_path(db_path, base) if db_path else None,
                    retention=RetentionTiers(
                        daily=int(retention.get("daily", 7)),
                        weekly=int(retention.get("weekly", 4)),
                        monthly=int(retention.get("monthly", 12)),
                        tiered=bool(retention.get("tiered", False)),
                    ),
                    compression=bool(db.get("compression", True)),
                ),
                files=FilesSettings(
                    enabled=bool(files.get("enabled", True)),
                    schedule=str(files.get("schedule", "0 3 * * 0")).strip(),
                    root=_path(files.get("root"), base),
                    directories=tuple(str(item) for item in files.get("directories") or ()),
                    exclusions=tuple(str(item) for item in files.get("exclusions") or ()),
                    compression=bool(files.get("compression", True)),
                    retention_days=int(files_retention) if files_retention is not None else None,
                ),
                storage=StorageSettings(path=storage_path),
                notifications=NotificationSettings(
                    enabled=bool(notifications.get("enabled", True)),
                    on_success=bool(notifications.get("on_success", False)),
                    on_failure=bool(notifications.get("on_failure", True)),
                    email=notifications.get("email") or None,
                    webhook=notifications.get("webhook") or None,
                ),
                cleanup=CleanupSettings(
                    database_schedule=str(cleanup.get("database_schedule", "0 1 * * *")).strip(),
                    files_schedule=str(cleanup.get("files_schedule", "30 1 * * *")).strip(),
                ),
                timezone=str(section.get("timezone") or "Europe/Rome"),
                log_dir=_path(section["log_dir"], base / "logs") if section.get("log_dir") else None,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigInvalidError(f"Malformed backup settings: {exc}") from exc

    # ------------------------------------------------------------------
    def validate(self) -> "BackupConfig":
        """Check cadences, retention and storage; raise ``ConfigInvalidError`` on the first problem."""

        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigInvalidError(f"Unknown timezone {self.timezone!r}") from exc

        if self.database.enabled:
            validate_cron(self.database.schedule, timezone=self.timezone)
        if self.files.enabled:
            validate_cron(self.files.schedule, timezone=self.timezone)
        validate_cron(self.cleanup.database_schedule, timezone=self.timezone)
        validate_cron(self.cleanup.files_schedule, timezone=self.timezone)

        retention = self.database.retention
        if retention.daily < 1:
            raise ConfigInvalidError("Daily retention must be at least 1")
        if retention.weekly < 0 or retention.monthly < 0:
            raise ConfigInvalidError("Weekly and monthly retention must not be negative")
        if self.files.retention_days is not None and self.files.retention_days < 1:
            raise ConfigInvalidError("Files retention must be at least 1 day")

        if not _ensure_writable_dir(self.storage.path):
            raise ConfigInvalidError(f"Backup storage path is not writable: {self.storage.path}")
        LOGGER.info("backup configuration validated", extra={"storage": str(self.storage.path)})
        return self

    def to_json(self) -> Dict[str, Any]:
        return {
            "database": {
                "enabled": self.database.enabled,
                "schedule": self.database.schedule,
                "path": str(self.database.path) if self.database.path else None,
                "retention": {
                    "daily": self.database.retention.daily,
                    "weekly": self.database.retention.weekly,
                    "monthly": self.database.retention.monthly,
                    "tiered": self.database.retention.tiered,
                },
                "compression": self.database.compression,
            },
            "files": {
                "enabled": self.files.enabled,
                "schedule": self.files.schedule,
                "root": str(self.files.root),
                "directories": list(self.files.directories),
                "exclusions": list(self.files.exclusions),
                "compression": self.files.compression,
                "retention_days": self.files.retention_days,
            },
            "storage": {"path": str(self.storage.path)},
            "notifications": {
                "enabled": self.notifications.enabled,
                "on_success": self.notifications.on_success,
                "on_failure": self.notifications.on_failure,
                "email": self.notifications.email,
                "webhook": self.notifications.webhook,
            },
            "cleanup": {
                "database_schedule": self.cleanup.database_schedule,
                "files_schedule": self.cleanup.files_schedule,
            },
            "timezone": self.timezone,
            "log_dir": str(self.logs_path),
        }


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
    except OSError:
        return False
    return True


def _database_path_from_url(url: str) -> Optional[str]:
    if url.startswith("file:"):
        return url[len("file:") :]
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///") :]
    return None


def apply_env_overrides(payload: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Apply ``BACKUP_*`` and ``DATABASE_URL`` overrides onto a merged settings dict."""

    result = merge_defaults(payload, DEFAULT_BACKUP_SETTINGS)
    if environ.get("BACKUP_ENABLED", "").lower() == "false":
        result["database"]["enabled"] = False
        result["files"]["enabled"] = False
    if environ.get("BACKUP_DATABASE_SCHEDULE"):
        result["database"]["schedule"] = environ["BACKUP_DATABASE_SCHEDULE"]
    if environ.get("BACKUP_FILES_SCHEDULE"):
        result["files"]["schedule"] = environ["BACKUP_FILES_SCHEDULE"]
    if environ.get("BACKUP_RETENTION_DAILY"):
        try:
            result["database"]["retention"]["daily"] = int(environ["BACKUP_RETENTION_DAILY"])
        except ValueError as exc:
            raise ConfigInvalidError("BACKUP_RETENTION_DAILY must be an integer") from exc
    if environ.get("BACKUP_FILES_RETENTION_DAYS"):
        try:
            result["files"]["retention_days"] = int(environ["BACKUP_FILES_RETENTION_DAYS"])
        except ValueError as exc:
            raise ConfigInvalidError("BACKUP_FILES_RETENTION_DAYS must be an integer") from exc
    if environ.get("BACKUP_LOCAL_PATH"):
        result["storage"]["path"] = environ["BACKUP_LOCAL_PATH"]
    if environ.get("BACKUP_NOTIFICATION_EMAIL"):
        result["notifications"]["email"] = environ["BACKUP_NOTIFICATION_EMAIL"]
        result["notifications"]["enabled"] = True
    if environ.get("BACKUP_NOTIFICATION_WEBHOOK"):
        result["notifications"]["webhook"] = environ["BACKUP_NOTIFICATION_WEBHOOK"]
        result["notifications"]["enabled"] = True
    if environ.get("BACKUP_TIMEZONE"):
        result["timezone"] = environ["BACKUP_TIMEZONE"]
    if not result["database"].get("path") and environ.get("DATABASE_URL"):
        db_path = _database_path_from_url(environ["DATABASE_URL"])
        if db_path:
            result["database"]["path"] = db_path
    return result


def load_backup_config(
    working_dir: Path,
    *,
    settings: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BackupConfig:
    """Build and validate the backup configuration for *working_dir*.

    ``settings`` is the full application settings mapping; only its ``backup``
    section is read. When omitted, ``settings.json`` in *working_dir* is used.
    """

    working_dir = Path(working_dir)
    source = dict(settings) if settings is not None else load_settings(working_dir)
    section = source.get("backup") if isinstance(source.get("backup"), dict) else {}
    env = os.environ if environ is None else environ
    payload = apply_env_overrides(dict(section), env)
    try:
        config = BackupConfig.from_settings(payload, working_dir=working_dir)
        return config.validate()
    except ConfigInvalidError as exc:
        LOGGER.error("backup configuration invalid: %s", exc)
        raise
