from pathlib import Path

import pytest
from fastapi import FastAPI, Header, HTTPException
from fastapi.testclient import TestClient

from backup.api import BackupService
from backup.errors import (
    AlreadyRunningError,
    ArtifactNotFoundError,
    BackupIOError,
    ChecksumMismatchError,
    ConfigInvalidError,
    SidecarInvalidError,
    UnknownJobError,
)
from backup.routes import build_router, error_status
from orchestrator.scheduler import BackupScheduler

from conftest import init_db


@pytest.fixture
def service(config) -> BackupService:
    init_db(config.database.path, users=3, products=5)
    return BackupService(config)


@pytest.fixture
def scheduler(config, service):
    scheduler = BackupScheduler(config, service=service)
    scheduler.initialize()
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def client(service, scheduler) -> TestClient:
    app = FastAPI()
    app.include_router(build_router(service, scheduler))
    return TestClient(app)


def test_create_list_and_verify(client: TestClient) -> None:
    created = client.post("/api/backup/database")
    assert created.status_code == 200
    body = created.json()
    assert body["success"] is True
    assert body["metadata"]["recordCounts"] == {"users": 3, "products": 5}

    listed = client.get("/api/backup/list", params={"type": "database"})
    assert listed.status_code == 200
    assert listed.json()["count"] == 1
    assert listed.json()["backups"][0]["path"] == body["backupPath"]

    verified = client.post("/api/backup/verify", json={"backupPath": body["backupPath"]})
    assert verified.status_code == 200
    assert verified.json()["valid"] is True


def test_verify_reports_invalid_artifact_in_body(client: TestClient, config) -> None:
    response = client.post(
        "/api/backup/verify",
        json={"backupPath": str(config.storage.path / "database_backup_2024-01-01_00-00-00.db.zip")},
    )
    assert response.status_code == 200
    assert response.json()["valid"] is False
    assert response.json()["error"] == "not_found"


def test_uncompressed_database_backup(client: TestClient) -> None:
    response = client.post("/api/backup/database", json={"compression": False})
    assert response.status_code == 200
    assert response.json()["backupPath"].endswith(".db")


def test_files_backup_without_sources(client: TestClient) -> None:
    response = client.post("/api/backup/files")
    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "source_unavailable"


def test_restore_missing_artifact_is_404(client: TestClient) -> None:
    response = client.post("/api/backup/restore/database", json={"backupPath": "database_backup_1999-01-01_00-00-00.db.zip"})
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


def test_restore_files_round_trip(client: TestClient, config, tmp_path: Path) -> None:
    upload = config.files.root / "uploads" / "a.txt"
    upload.parent.mkdir(parents=True)
    upload.write_text("hello", encoding="utf-8")
    artifact = client.post("/api/backup/files").json()["backupPath"]

    target = tmp_path / "restored"
    response = client.post(
        "/api/backup/restore/files",
        json={"backupPath": artifact, "targetDirectory": str(target)},
    )

    assert response.status_code == 200
    assert (target / "uploads" / "a.txt").read_text(encoding="utf-8") == "hello"


def test_conflicting_operation_is_409(client: TestClient, service: BackupService) -> None:
    with service.locks.hold("database", "database-backup"):
        response = client.post("/api/backup/database")
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "already_running"


def test_jobs_and_controls(client: TestClient) -> None:
    jobs = client.get("/api/backup/jobs").json()["jobs"]
    assert {job["name"] for job in jobs} == {"database-backup", "files-backup", "database-cleanup", "files-cleanup"}

    stopped = client.post("/api/backup/jobs/files-backup/stop")
    assert stopped.status_code == 200
    assert stopped.json()["active"] is False
    started = client.post("/api/backup/jobs/files-backup/start")
    assert started.json()["active"] is True

    triggered = client.post("/api/backup/jobs/database-backup/trigger")
    assert triggered.status_code == 200
    assert triggered.json()["ok"] is True
    assert triggered.json()["ran"] is True


def test_unknown_job_is_400(client: TestClient) -> None:
    response = client.post("/api/backup/jobs/nightly-vacuum/trigger")
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "unknown_job"


def test_status_and_stats(client: TestClient) -> None:
    client.post("/api/backup/database")

    status = client.get("/api/backup/status").json()
    assert status["scheduler"]["running"] is True
    assert len(status["scheduler"]["jobs"]) == 4
    assert status["health"]["databaseExists"] is True
    assert status["config"]["timezone"] == "Europe/Rome"

    stats = client.get("/api/backup/stats").json()
    assert stats["count"] == 1
    assert stats["types"]["database"]["count"] == 1


def test_cleanup_endpoint(client: TestClient) -> None:
    response = client.post("/api/backup/cleanup", json={"type": "files"})
    assert response.status_code == 200
    body = response.json()
    assert body["deletedCount"] == 0
    assert [item["type"] for item in body["results"]] == ["files"]


def test_jobs_without_scheduler_is_503(service: BackupService) -> None:
    app = FastAPI()
    app.include_router(build_router(service))
    client = TestClient(app)

    assert client.get("/api/backup/jobs").status_code == 503
    assert client.get("/api/backup/status").json()["scheduler"] == {"running": False, "jobs": []}


def test_host_dependencies_guard_every_route(service: BackupService) -> None:
    def require_token(x_backup_token: str = Header(default="")) -> None:
        if x_backup_token != "s3cret":
            raise HTTPException(status_code=401, detail="unauthorized")

    app = FastAPI()
    app.include_router(build_router(service, dependencies=[require_token]))
    client = TestClient(app)

    assert client.get("/api/backup/stats").status_code == 401
    assert client.get("/api/backup/stats", headers={"X-Backup-Token": "s3cret"}).status_code == 200


def test_error_status_mapping() -> None:
    assert error_status(ArtifactNotFoundError("gone")) == 404
    assert error_status(AlreadyRunningError("busy")) == 409
    assert error_status(ChecksumMismatchError("bad")) == 422
    assert error_status(SidecarInvalidError("bad")) == 422
    assert error_status(ConfigInvalidError("bad")) == 400
    assert error_status(UnknownJobError("who")) == 400
    assert error_status(BackupIOError("disk")) == 500


def test_cleanup_all_reports_locked_type(client: TestClient, service: BackupService) -> None:
    with service.locks.hold("database", "database-backup"):
        response = client.post("/api/backup/cleanup")
    assert response.status_code == 200
    results = {item["type"]: item for item in response.json()["results"]}
    assert len(results["database"]["errors"]) == 1
    assert results["files"]["errors"] == []


def test_logs_returns_recent_events(client: TestClient, service: BackupService) -> None:
    client.post("/api/backup/database")
    with service.locks.hold("database", "database-backup"):
        client.post("/api/backup/cleanup")

    response = client.get("/api/backup/logs", params={"limit": 1})
    assert response.status_code == 200
    entries = response.json()["entries"]
    assert len(entries) == 1
    assert entries[0]["event"] == "cleanup_skipped"
    assert entries[0]["type"] == "database"

    everything = client.get("/api/backup/logs").json()["entries"]
    assert "copy_sqlite" in [entry["event"] for entry in everything]
    assert client.get("/api/backup/logs", params={"limit": 0}).status_code == 422
