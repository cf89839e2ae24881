import sqlite3
import zipfile
from pathlib import Path

import pytest

import backup.restore as restore_module
from backup.database import create_database_backup
from backup.artifacts import sidecar_path
from backup.errors import ArtifactNotFoundError, BackupRestoreError, ChecksumMismatchError, SidecarInvalidError
from backup.files import create_files_backup
from backup.restore import restore_database, restore_files

from conftest import count, init_db


def _tree(root: Path) -> dict:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def test_files_round_trip_is_byte_identical(config, logger, tmp_path: Path) -> None:
    root = config.files.root
    (root / "uploads" / "img").mkdir(parents=True)
    (root / "config").mkdir(parents=True)
    (root / "uploads" / "img" / "a.png").write_bytes(bytes(range(256)) * 10)
    (root / "uploads" / "doc.txt").write_text("quarterly numbers\n", encoding="utf-8")
    (root / "config" / "app.json").write_text('{"debug": false}', encoding="utf-8")
    original = _tree(root)
    artifact = create_files_backup(config, logger=logger).artifact_path

    target = tmp_path / "restored"
    result = restore_files(config, artifact, target, logger=logger)

    assert result.success is True
    assert result.extracted_files == 3
    assert result.skipped == []
    assert _tree(target) == original


def test_restore_files_defaults_to_files_root(config, logger) -> None:
    doc = config.files.root / "uploads" / "doc.txt"
    doc.parent.mkdir(parents=True)
    doc.write_text("version one", encoding="utf-8")
    artifact = create_files_backup(config, logger=logger).artifact_path
    doc.write_text("version two", encoding="utf-8")

    result = restore_files(config, artifact, logger=logger)

    assert result.target_dir == config.files.root.resolve()
    assert doc.read_text(encoding="utf-8") == "version one"


def test_restore_files_skips_entries_escaping_target(config, logger, tmp_path: Path) -> None:
    config.storage.path.mkdir(parents=True, exist_ok=True)
    artifact = config.storage.path / "files_backup_2024-01-01_00-00-00.zip"
    with zipfile.ZipFile(artifact, "w") as archive:
        archive.writestr("uploads/ok.txt", "fine")
        archive.writestr("../escape.txt", "nope")
        archive.writestr("/etc/absolute.txt", "nope")
        archive.writestr("empty-dir/", "")
    target = tmp_path / "target"

    result = restore_files(config, artifact, target, logger=logger)

    assert result.extracted_files == 1
    assert sorted(result.skipped) == ["../escape.txt", "/etc/absolute.txt"]
    assert (target / "uploads" / "ok.txt").read_text(encoding="utf-8") == "fine"
    assert (target / "empty-dir").is_dir()
    assert not (tmp_path / "escape.txt").exists()


def test_restore_files_refuses_tampered_archive(config, logger, tmp_path: Path) -> None:
    upload = config.files.root / "uploads" / "a.txt"
    upload.parent.mkdir(parents=True)
    upload.write_text("payload" * 100, encoding="utf-8")
    artifact = create_files_backup(config, logger=logger).artifact_path
    data = bytearray(artifact.read_bytes())
    data[50] ^= 0xFF
    artifact.write_bytes(bytes(data))
    target = tmp_path / "target"

    with pytest.raises(ChecksumMismatchError):
        restore_files(config, artifact, target, logger=logger)
    assert not target.exists() or list(target.iterdir()) == []


def test_restore_files_refuses_archive_with_unreadable_sidecar(config, logger, tmp_path: Path) -> None:
    upload = config.files.root / "uploads" / "a.txt"
    upload.parent.mkdir(parents=True)
    upload.write_text("genuine", encoding="utf-8")
    artifact = create_files_backup(config, logger=logger).artifact_path
    with zipfile.ZipFile(artifact, "w") as archive:
        archive.writestr("uploads/a.txt", "TAMPERED")
    sidecar_path(artifact).write_text("{not json", encoding="utf-8")
    target = tmp_path / "target"

    with pytest.raises(SidecarInvalidError):
        restore_files(config, artifact, target, logger=logger)
    assert not (target / "uploads" / "a.txt").exists()


def test_restore_database_replaces_live_file(config, logger) -> None:
    live = init_db(config.database.path, users=3, products=5)
    artifact = create_database_backup(config, logger=logger).artifact_path
    conn = sqlite3.connect(live)
    conn.execute("INSERT INTO users(name) VALUES ('late arrival')")
    conn.commit()
    conn.close()
    assert count(live, "users") == 4

    result = restore_database(config, artifact, logger=logger)

    assert result.success is True
    assert result.requires_process_restart is True
    assert result.restored_from == artifact
    assert count(live, "users") == 3
    assert count(live, "products") == 5
    assert result.safety_copy is not None and result.safety_copy.exists()
    assert count(result.safety_copy, "users") == 4


def test_restore_database_rolls_back_failed_swap(config, logger, monkeypatch) -> None:
    live = init_db(config.database.path, users=3)
    artifact = create_database_backup(config, logger=logger).artifact_path
    conn = sqlite3.connect(live)
    conn.execute("INSERT INTO users(name) VALUES ('keep me')")
    conn.commit()
    conn.close()

    original = restore_module._check_snapshot
    calls = []

    def _fail_after_swap(path: Path) -> None:
        calls.append(path)
        if path == live:
            raise BackupRestoreError("simulated failure after swap")
        original(path)

    monkeypatch.setattr(restore_module, "_check_snapshot", _fail_after_swap)

    with pytest.raises(BackupRestoreError) as excinfo:
        restore_database(config, artifact, logger=logger)

    assert excinfo.value.rolled_back is True
    assert excinfo.value.store_consistent is True
    assert count(live, "users") == 4
    assert len(calls) == 2
    assert not any(p.name.startswith(live.name + ".restore-") for p in live.parent.iterdir())


def test_restore_database_rejects_missing_artifact(config, logger) -> None:
    live = init_db(config.database.path)
    before = live.read_bytes()

    with pytest.raises(ArtifactNotFoundError):
        restore_database(config, config.storage.path / "database_backup_2024-01-01_00-00-00.db.zip", logger=logger)

    assert live.read_bytes() == before


def test_restore_database_into_missing_live_file(config, logger) -> None:
    live = init_db(config.database.path, users=2)
    artifact = create_database_backup(config, logger=logger).artifact_path
    live.unlink()

    result = restore_database(config, artifact, logger=logger)

    assert result.safety_copy is None
    assert count(live, "users") == 2
