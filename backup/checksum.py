"""SHA-256 digests and sidecar metadata files."""
from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Optional

from .artifacts import sidecar_path
from .errors import SidecarInvalidError
from .types import DatabaseSidecar, FilesSidecar, Sidecar

_CHUNK_SIZE = 1024 * 1024


def checksum(path: Path) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_sidecar(artifact: Path, sidecar: Sidecar) -> Path:
    target = sidecar_path(Path(artifact))
    tmp = target.with_name(target.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        json.dump(sidecar.to_json(), handle, indent=2, sort_keys=True)
    os.replace(tmp, target)
    return target


def read_sidecar(artifact: Path) -> Optional[Sidecar]:
    """Load the sidecar for *artifact*; ``None`` when it does not exist."""

    target = sidecar_path(Path(artifact))
    if not target.exists():
        return None
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
        kind = data.get("type")
        if kind == "database":
            return DatabaseSidecar.from_json(data)
        if kind == "files":
            return FilesSidecar.from_json(data)
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise SidecarInvalidError(f"sidecar {target.name} is unreadable: {exc}") from exc
    raise SidecarInvalidError(f"sidecar {target.name} has unknown type {kind!r}")


__all__ = ["checksum", "read_sidecar", "write_sidecar"]
