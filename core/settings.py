from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping

__all__ = [
    "SETTINGS_ENV_VAR",
    "get_default_settings_paths",
    "load_settings",
    "merge_defaults",
]

LOGGER = logging.getLogger("backupengine.settings")

SETTINGS_ENV_VAR = "BACKUP_SETTINGS_PATH"


def get_default_settings_paths(working_dir: Path) -> List[Path]:
    """Return candidate settings files, highest priority first."""

    candidates: List[Path] = []
    override = os.environ.get(SETTINGS_ENV_VAR)
    if override:
        candidates.append(Path(override).expanduser())
    candidates.append(working_dir / "settings.json")
    candidates.append(working_dir / "config" / "settings.json")
    return candidates


def merge_defaults(data: Mapping[str, Any], defaults: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep-merge *data* over *defaults*, returning fresh containers."""

    def _merge(default: Mapping[str, Any], payload: Mapping[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, (list, tuple)) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(defaults, data or {})


def load_settings(working_dir: Path) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for candidate in get_default_settings_paths(Path(working_dir)):
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as exc:
            LOGGER.warning("ignoring unreadable settings file %s: %s", candidate, exc)
            continue
        except OSError:
            continue
        if isinstance(loaded, dict):
            data = loaded
            break
    data.setdefault("working_dir", str(working_dir))
    return data

