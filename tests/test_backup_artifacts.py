import json
import os
import time
from datetime import datetime
from pathlib import Path

from backup.artifacts import (
    allocate_artifact_path,
    artifact_basename,
    detect_type,
    format_size,
    list_artifacts,
    partial_path,
    sidecar_path,
)
from backup.logs import BackupLogger


def test_artifact_names_follow_pattern(tmp_path: Path) -> None:
    stamp = datetime(2024, 5, 6, 7, 8, 9)
    assert artifact_basename("database", stamp) == "database_backup_2024-05-06_07-08-09"

    first = allocate_artifact_path(tmp_path, "database", "db.zip", stamp)
    assert first.name == "database_backup_2024-05-06_07-08-09.db.zip"
    first.write_bytes(b"x")
    second = allocate_artifact_path(tmp_path, "database", "db.zip", stamp)
    assert second.name == "database_backup_2024-05-06_07-08-09_2.db.zip"

    partial_path(second).write_bytes(b"")
    third = allocate_artifact_path(tmp_path, "database", "db.zip", stamp)
    assert third.name == "database_backup_2024-05-06_07-08-09_3.db.zip"

    assert sidecar_path(first).name == "database_backup_2024-05-06_07-08-09.db.zip.meta.json"


def test_detect_type() -> None:
    assert detect_type(Path("database_backup_2024-05-06_07-08-09.db.zip")) == "database"
    assert detect_type(Path("database_backup_2024-05-06_07-08-09.db")) == "database"
    assert detect_type(Path("files_backup_2024-05-06_07-08-09_2.zip")) == "files"
    assert detect_type(Path("files_backup_2024-05-06_07-08-09.db")) is None
    assert detect_type(Path("files_backup_2024-05-06_07-08-09.zip.partial")) is None
    assert detect_type(Path("files_backup_2024-05-06_07-08-09.zip.meta.json")) is None
    assert detect_type(Path("notes.txt")) is None


def test_list_artifacts_newest_first_and_filters(tmp_path: Path) -> None:
    now = time.time()
    names = [
        ("database_backup_2024-01-01_00-00-00.db.zip", now - 300),
        ("database_backup_2024-01-02_00-00-00.db.zip", now - 100),
        ("files_backup_2024-01-01_00-00-00.zip", now - 200),
    ]
    for name, mtime in names:
        path = tmp_path / name
        path.write_bytes(b"data")
        os.utime(path, (mtime, mtime))
    (tmp_path / "files_backup_2024-01-03_00-00-00.zip.partial").write_bytes(b"")
    (tmp_path / "readme.txt").write_text("ignore me", encoding="utf-8")
    (tmp_path / "_safety").mkdir()

    everything = list_artifacts(tmp_path)
    assert [item.name for item in everything] == [
        "database_backup_2024-01-02_00-00-00.db.zip",
        "files_backup_2024-01-01_00-00-00.zip",
        "database_backup_2024-01-01_00-00-00.db.zip",
    ]
    databases = list_artifacts(tmp_path, "database")
    assert {item.type for item in databases} == {"database"}
    assert len(databases) == 2
    assert list_artifacts(tmp_path / "missing") == []


def test_list_artifacts_tolerates_corrupt_sidecar(tmp_path: Path) -> None:
    artifact = tmp_path / "files_backup_2024-01-01_00-00-00.zip"
    artifact.write_bytes(b"data")
    sidecar_path(artifact).write_text("{broken", encoding="utf-8")

    items = list_artifacts(tmp_path)
    assert len(items) == 1
    assert items[0].metadata is None


def test_format_size() -> None:
    assert format_size(0) == "0 Bytes"
    assert format_size(512) == "512 Bytes"
    assert format_size(1536) == "1.5 KB"
    assert format_size(5 * 1024 * 1024) == "5 MB"


def test_backup_logger_writes_jsonl(tmp_path: Path) -> None:
    logger = BackupLogger(tmp_path / "logs")
    logger.event(event="database_backup_complete", phase="create", ok=True, size="1 KB")
    logger.warning("files_directory_missing", directory="uploads")

    lines = logger.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["event"] == "database_backup_complete"
    assert first["phase"] == "create"
    assert first["ok"] is True
    assert "ts" in first

    tail = logger.tail(1)
    assert tail == [json.loads(lines[1])]
    assert tail[0]["ok"] is False
