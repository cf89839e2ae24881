"""Retention policy enforcement for backup artifacts."""
from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Set

from .artifacts import list_artifacts, sidecar_path
from .config import BackupConfig, RetentionTiers
from .logs import BackupLogger
from .types import ArtifactInfo, BackupType, CleanupResult


def retention_days(config: BackupConfig, backup_type: BackupType) -> int:
    if backup_type == "database":
        return int(config.database.retention.daily)
    return config.files_retention_days()


def retention_cutoff(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now()) - timedelta(days=days)


def _tier_keepers(items: List[ArtifactInfo], tiers: RetentionTiers, now: datetime) -> Dict[str, Set[str]]:
    """Pick the newest artifact per ISO week and per month inside the tier windows."""

    keep: Dict[str, Set[str]] = {}
    if tiers.weekly > 0:
        cutoff = now - timedelta(weeks=tiers.weekly)
        seen_weeks: Set[tuple[int, int]] = set()
        for item in items:
            if item.created < cutoff:
                continue
            year, week, _ = item.created.isocalendar()
            if (year, week) in seen_weeks:
                continue
            seen_weeks.add((year, week))
            keep.setdefault(item.name, set()).add("weekly")

    if tiers.monthly > 0:
        oldest = (now.year * 12 + now.month - 1) - tiers.monthly
        seen_months: Set[tuple[int, int]] = set()
        for item in items:
            index = item.created.year * 12 + item.created.month - 1
            if index <= oldest:
                continue
            key = (item.created.year, item.created.month)
            if key in seen_months:
                continue
            seen_months.add(key)
            keep.setdefault(item.name, set()).add("monthly")
    return keep


def expired_artifacts(
    items: List[ArtifactInfo],
    days: int,
    *,
    now: Optional[datetime] = None,
    tiers: Optional[RetentionTiers] = None,
) -> List[ArtifactInfo]:
    """Return the artifacts strictly older than the cutoff, minus tier keepers."""

    now = now or datetime.now()
    cutoff = retention_cutoff(days, now)
    # tier walk expects newest first
    ordered = sorted(items, key=lambda item: item.created, reverse=True)
    keepers: Dict[str, Set[str]] = {}
    if tiers is not None and tiers.tiered:
        keepers = _tier_keepers(ordered, tiers, now)
    return [item for item in ordered if item.created < cutoff and item.name not in keepers]


def _remove(path: Path) -> None:
    path.unlink(missing_ok=True)


def cleanup_backups(
    config: BackupConfig,
    backup_type: BackupType,
    *,
    logger: BackupLogger,
    now: Optional[datetime] = None,
) -> CleanupResult:
    """Delete expired artifacts of *backup_type* and their sidecars.

    A failure on one artifact is recorded and the loop continues.
    """

    days = retention_days(config, backup_type)
    items = list_artifacts(config.storage.path, backup_type, with_metadata=False)
    tiers = config.database.retention if backup_type == "database" else None
    expired = expired_artifacts(items, days, now=now, tiers=tiers)

    result = CleanupResult(backup_type=backup_type)
    for item in expired:
        try:
            _remove(item.path)
            _remove(sidecar_path(item.path))
        except OSError as exc:
            logger.error("backup_remove_failed", path=str(item.path), error=str(exc))
            result.errors.append(f"{item.name}: {exc}")
            continue
        result.deleted.append(item.name)
        logger.warning("backup_removed", path=str(item.path), reason="retention", type=backup_type)
    result.deleted_count = len(result.deleted)

    logger.event(
        event="retention_applied",
        phase="retention",
        ok=not result.errors,
        type=backup_type,
        retention_days=days,
        removed=result.deleted_count,
        kept=len(items) - result.deleted_count,
        errors=len(result.errors),
    )
    return result


__all__ = ["cleanup_backups", "expired_artifacts", "retention_cutoff", "retention_days"]
