"""Artifact naming, discovery and size formatting."""
from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .types import BACKUP_TYPES, ArtifactInfo, BackupType

LOGGER = logging.getLogger("backupengine.artifacts")

SIDECAR_SUFFIX = ".meta.json"
PARTIAL_SUFFIX = ".partial"

_ARTIFACT_RE = re.compile(
    r"^(?P<type>database|files)_backup_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}(?:_\d+)?\.(?P<ext>db\.zip|db|zip)$"
)
_EXTENSIONS = {
    "database": ("db.zip", "db"),
    "files": ("zip",),
}


def artifact_basename(backup_type: BackupType, timestamp: Optional[datetime] = None) -> str:
    now = timestamp or datetime.now()
    return f"{backup_type}_backup_{now.strftime('%Y-%m-%d')}_{now.strftime('%H-%M-%S')}"


def allocate_artifact_path(storage: Path, backup_type: BackupType, extension: str, timestamp: Optional[datetime] = None) -> Path:
    """Return a free artifact path in *storage*, adding ``_N`` when the second is already taken."""

    base = artifact_basename(backup_type, timestamp)
    candidate = storage / f"{base}.{extension}"
    counter = 2
    while candidate.exists() or partial_path(candidate).exists():
        candidate = storage / f"{base}_{counter}.{extension}"
        counter += 1
    return candidate


def sidecar_path(artifact: Path) -> Path:
    return artifact.with_name(artifact.name + SIDECAR_SUFFIX)


def partial_path(artifact: Path) -> Path:
    return artifact.with_name(artifact.name + PARTIAL_SUFFIX)


def detect_type(path: Path) -> Optional[BackupType]:
    match = _ARTIFACT_RE.match(Path(path).name)
    if not match:
        return None
    backup_type = match.group("type")
    if match.group("ext") not in _EXTENSIONS[backup_type]:
        return None
    return backup_type  # type: ignore[return-value]


def list_artifacts(storage: Path, backup_type: Optional[BackupType] = None, *, with_metadata: bool = True) -> List[ArtifactInfo]:
    """List artifacts in *storage*, newest first by modification time."""

    from .checksum import read_sidecar
    from .errors import SidecarInvalidError

    storage = Path(storage)
    if not storage.exists():
        return []
    wanted = (backup_type,) if backup_type else BACKUP_TYPES
    items: List[ArtifactInfo] = []
    for child in storage.iterdir():
        detected = detect_type(child)
        if detected is None or detected not in wanted or not child.is_file():
            continue
        try:
            stat = child.stat()
        except FileNotFoundError:
            continue
        metadata = None
        if with_metadata:
            try:
                metadata = read_sidecar(child)
            except SidecarInvalidError as exc:
                LOGGER.warning("unreadable sidecar for %s: %s", child.name, exc)
        items.append(
            ArtifactInfo(
                path=child,
                name=child.name,
                type=detected,
                size=stat.st_size,
                created=datetime.fromtimestamp(stat.st_mtime),
                metadata=metadata,
            )
        )
    items.sort(key=lambda item: item.created, reverse=True)
    return items


def format_size(num_bytes: int) -> str:
    """Return a human readable size such as ``1.5 KB``."""

    units = ["Bytes", "KB", "MB", "GB", "TB"]
    if num_bytes <= 0:
        return "0 Bytes"
    index = min(int(math.floor(math.log(num_bytes, 1024))), len(units) - 1)
    size = num_bytes / math.pow(1024, index)
    return f"{round(size, 2):g} {units[index]}"


__all__ = [
    "PARTIAL_SUFFIX",
    "SIDECAR_SUFFIX",
    "allocate_artifact_path",
    "artifact_basename",
    "detect_type",
    "format_size",
    "list_artifacts",
    "partial_path",
    "sidecar_path",
]
