from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict

import pytest

from backup.config import BackupConfig
from backup.logs import BackupLogger
from core.settings import merge_defaults


class StubLogger:
    """Recorder standing in for BackupLogger."""

    def __init__(self) -> None:
        self.events = []

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - simple recorder
        self.events.append(("event", event, phase, ok, extra))

    def debug(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("debug", event, extra))

    def info(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("error", event, extra))

    def names(self):
        return [entry[1] for entry in self.events]


def init_db(path: Path, *, users: int = 3, products: int = 5) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE users(id INTEGER PRIMARY KEY, name TEXT)")
        conn.execute("CREATE TABLE products(id INTEGER PRIMARY KEY, title TEXT, price REAL)")
        conn.executemany("INSERT INTO users(name) VALUES (?)", [(f"user-{i}",) for i in range(users)])
        conn.executemany(
            "INSERT INTO products(title, price) VALUES (?, ?)",
            [(f"product-{i}", float(i)) for i in range(products)],
        )
        conn.commit()
    finally:
        conn.close()
    return path


def count(path: Path, table: str) -> int:
    conn = sqlite3.connect(path)
    try:
        return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
    finally:
        conn.close()


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(overrides: Dict[str, Any] | None = None) -> BackupConfig:
        base = {
            "database": {"path": str(tmp_path / "data" / "app.db")},
            "files": {"root": str(tmp_path / "app"), "directories": ["uploads", "config"]},
            "storage": {"path": str(tmp_path / "backups")},
            "log_dir": str(tmp_path / "logs"),
        }
        payload = merge_defaults(overrides or {}, base)
        return BackupConfig.from_settings(payload, working_dir=tmp_path)

    return _make


@pytest.fixture
def config(make_config) -> BackupConfig:
    return make_config()


@pytest.fixture
def logger(tmp_path: Path) -> BackupLogger:
    return BackupLogger(tmp_path / "logs")
