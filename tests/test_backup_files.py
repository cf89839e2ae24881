import zipfile
from pathlib import Path

import pytest

import backup.files as files_module
from backup.checksum import read_sidecar
from backup.errors import BackupCancelledError, BackupIOError, SourceUnavailableError
from backup.files import collect_files, create_files_backup, is_excluded
from backup.locks import CancelToken

from conftest import StubLogger


def _write(path: Path, content: str = "data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _names(artifact: Path) -> list:
    with zipfile.ZipFile(artifact) as archive:
        return sorted(archive.namelist())


def test_excluded_glob_is_not_archived(make_config, logger) -> None:
    config = make_config({"files": {"directories": ["uploads"], "exclusions": ["*.tmp"]}})
    _write(config.files.root / "uploads" / "a.png")
    _write(config.files.root / "uploads" / "b.tmp")

    result = create_files_backup(config, logger=logger)

    assert _names(result.artifact_path) == ["uploads/a.png"]
    assert result.file_count == 1
    assert result.metadata.exclusions == ["*.tmp"]


def test_default_exclusions_and_hidden_entries(config, logger) -> None:
    root = config.files.root
    _write(root / "uploads" / "photos" / "cat.jpg")
    _write(root / "uploads" / "server.log")
    _write(root / "uploads" / "node_modules" / "pkg" / "index.js")
    _write(root / "uploads" / "nested" / "coverage" / "report.html")
    _write(root / "uploads" / ".hidden")
    _write(root / "uploads" / ".cache" / "blob.bin")
    _write(root / "config" / "app.json", "{}")
    _write(root / "config" / "scratch.tmp")

    result = create_files_backup(config, logger=logger)

    assert _names(result.artifact_path) == ["config/app.json", "uploads/photos/cat.jpg"]
    for name in _names(result.artifact_path):
        assert not any(fragment in name for fragment in ("node_modules", "coverage", ".log", ".tmp", ".hidden", ".cache"))


def test_round_trip_metadata(config, logger) -> None:
    _write(config.files.root / "uploads" / "one.txt", "1" * 100)
    _write(config.files.root / "uploads" / "two.txt", "2" * 50)

    result = create_files_backup(config, logger=logger)

    sidecar = read_sidecar(result.artifact_path)
    assert sidecar is not None
    assert sidecar.file_count == 2
    assert sidecar.total_size == 150
    assert sidecar.directories == ["uploads", "config"]
    assert result.missing_directories == ["config"]
    with zipfile.ZipFile(result.artifact_path) as archive:
        assert archive.read("uploads/one.txt") == b"1" * 100


def test_vanished_file_is_skipped(config, logger, monkeypatch) -> None:
    uploads = config.files.root / "uploads"
    for index in range(100):
        _write(uploads / f"file-{index:03d}.txt", f"content {index}")

    original = files_module.collect_files

    def _collect_then_delete(cfg, *, logger):
        collected = original(cfg, logger=logger)
        (uploads / "file-042.txt").unlink()
        return collected

    monkeypatch.setattr(files_module, "collect_files", _collect_then_delete)

    result = create_files_backup(config, logger=logger)

    assert result.file_count == 99
    assert result.skipped == ["uploads/file-042.txt"]
    assert len(_names(result.artifact_path)) == 99
    assert read_sidecar(result.artifact_path).skipped_files == ["uploads/file-042.txt"]


def test_all_directories_missing(config, logger) -> None:
    with pytest.raises(SourceUnavailableError):
        create_files_backup(config, logger=logger)
    assert not config.storage.path.exists() or list(config.storage.path.iterdir()) == []


def test_nothing_readable_is_an_io_failure(config, logger, monkeypatch) -> None:
    uploads = config.files.root / "uploads"
    _write(uploads / "a.txt")
    _write(uploads / "b.txt")
    original = files_module.collect_files

    def _collect_then_wipe(cfg, *, logger):
        collected = original(cfg, logger=logger)
        for path, _ in collected[0]:
            path.unlink()
        return collected

    monkeypatch.setattr(files_module, "collect_files", _collect_then_wipe)

    with pytest.raises(BackupIOError):
        create_files_backup(config, logger=logger)
    assert list(config.storage.path.iterdir()) == []


def test_empty_directories_give_empty_archive(config) -> None:
    (config.files.root / "uploads").mkdir(parents=True)
    stub = StubLogger()

    result = create_files_backup(config, logger=stub)

    assert result.file_count == 0
    assert _names(result.artifact_path) == []
    assert "files_backup_empty" in stub.names()


def test_cancellation_deletes_partial_archive(config, logger) -> None:
    _write(config.files.root / "uploads" / "a.txt")
    token = CancelToken()
    token.cancel()

    with pytest.raises(BackupCancelledError):
        create_files_backup(config, logger=logger, cancel=token)

    assert list(config.storage.path.iterdir()) == []


def test_collect_files_deduplicates_overlapping_directories(make_config, logger) -> None:
    config = make_config({"files": {"directories": ["uploads", "uploads/photos"]}})
    _write(config.files.root / "uploads" / "photos" / "cat.jpg")

    files, present, missing = collect_files(config, logger=logger)

    assert [entry for _, entry in files] == ["uploads/photos/cat.jpg"]
    assert present == ["uploads", "uploads/photos"]
    assert missing == []


def test_directory_outside_root_uses_directory_name(make_config, logger, tmp_path: Path) -> None:
    outside = tmp_path / "shared" / "media"
    _write(outside / "clip.mp4")
    config = make_config({"files": {"directories": [str(outside)]}})

    files, _, _ = collect_files(config, logger=logger)

    assert [entry for _, entry in files] == ["media/clip.mp4"]


def test_is_excluded_matches_components_and_paths() -> None:
    assert is_excluded("deep/node_modules/x.js", ["node_modules"])
    assert is_excluded("a/b.tmp", ["*.tmp"])
    assert is_excluded("cache/item", ["cache/*"])
    assert is_excluded("item", ["uploads/item"], root_relative="uploads/item")
    assert not is_excluded("photos/cat.jpg", ["*.tmp", "node_modules"])
    assert not is_excluded("photos/cat.jpg", [])
