"""HTTP surface for backup control."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from .api import BackupService
from .errors import (
    AlreadyRunningError,
    ArtifactNotFoundError,
    BackupError,
    BackupVerificationError,
    ConfigInvalidError,
    RestoreConflictError,
    UnknownJobError,
)
from .types import BackupType

if TYPE_CHECKING:  # pragma: no cover - typing guard
    from orchestrator.scheduler import BackupScheduler


class DatabaseBackupRequest(BaseModel):
    compression: Optional[bool] = None


class RestoreDatabaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    backup_path: str = Field(alias="backupPath")


class RestoreFilesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    backup_path: str = Field(alias="backupPath")
    target_directory: Optional[str] = Field(default=None, alias="targetDirectory")


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    backup_path: str = Field(alias="backupPath")
    type: Optional[BackupType] = None


class CleanupRequest(BaseModel):
    type: Optional[BackupType] = None


class ListResponse(BaseModel):
    backups: List[Dict[str, Any]]
    count: int


class JobsResponse(BaseModel):
    jobs: List[Dict[str, Any]]


def error_status(exc: BackupError) -> int:
    if isinstance(exc, ArtifactNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (AlreadyRunningError, RestoreConflictError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, BackupVerificationError):
        return 422
    if isinstance(exc, (ConfigInvalidError, UnknownJobError)):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _http_error(exc: BackupError) -> HTTPException:
    return HTTPException(status_code=error_status(exc), detail=exc.to_json())


def build_router(
    service: BackupService,
    scheduler: Optional["BackupScheduler"] = None,
    *,
    dependencies: Sequence[Any] = (),
) -> APIRouter:
    """Return the ``/api/backup`` router; *dependencies* carry the host's authorization."""

    router = APIRouter(
        prefix="/api/backup",
        tags=["backup"],
        dependencies=[dep if not callable(dep) else Depends(dep) for dep in dependencies],
    )

    def require_scheduler() -> "BackupScheduler":
        if scheduler is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Backup scheduler not running")
        return scheduler

    @router.get("/status")
    def backup_status() -> Dict[str, Any]:
        jobs = [job.to_json() for job in scheduler.get_all_statuses()] if scheduler is not None else []
        return {
            "scheduler": {"running": bool(scheduler and scheduler.running), "jobs": jobs},
            "health": service.health(),
            "config": service.config.to_json(),
        }

    @router.get("/jobs", response_model=JobsResponse)
    def jobs() -> JobsResponse:
        active = require_scheduler()
        return JobsResponse(jobs=[job.to_json() for job in active.get_all_statuses()])

    @router.post("/database")
    def create_database(request: Optional[DatabaseBackupRequest] = None) -> Dict[str, Any]:
        compression = request.compression if request is not None else None
        try:
            return service.create_database_backup(compression=compression).to_json()
        except BackupError as exc:
            raise _http_error(exc) from exc

    @router.post("/files")
    def create_files() -> Dict[str, Any]:
        try:
            return service.create_files_backup().to_json()
        except BackupError as exc:
            raise _http_error(exc) from exc

    @router.get("/list", response_model=ListResponse)
    def list_backups(backup_type: Optional[BackupType] = Query(None, alias="type")) -> ListResponse:
        items = [item.to_json() for item in service.list_backups(backup_type)]
        return ListResponse(backups=items, count=len(items))

    @router.post("/restore/database")
    def restore_database(request: RestoreDatabaseRequest) -> Dict[str, Any]:
        try:
            return service.restore_database(request.backup_path).to_json()
        except BackupError as exc:
            raise _http_error(exc) from exc

    @router.post("/restore/files")
    def restore_files(request: RestoreFilesRequest) -> Dict[str, Any]:
        try:
            return service.restore_files(request.backup_path, request.target_directory).to_json()
        except BackupError as exc:
            raise _http_error(exc) from exc

    @router.post("/verify")
    def verify(request: VerifyRequest) -> Dict[str, Any]:
        return service.verify_backup(request.backup_path, request.type).to_json()

    @router.post("/jobs/{name}/trigger")
    def trigger(name: str) -> Dict[str, Any]:
        active = require_scheduler()
        try:
            return active.trigger_job(name).to_json()
        except BackupError as exc:
            raise _http_error(exc) from exc

    @router.post("/jobs/{name}/start")
    def start(name: str) -> Dict[str, Any]:
        active = require_scheduler()
        try:
            active.start_job(name)
            return active.get_status(name).to_json()
        except BackupError as exc:
            raise _http_error(exc) from exc

    @router.post("/jobs/{name}/stop")
    def stop(name: str) -> Dict[str, Any]:
        active = require_scheduler()
        try:
            active.stop_job(name)
            return active.get_status(name).to_json()
        except BackupError as exc:
            raise _http_error(exc) from exc

    @router.post("/cleanup")
    def cleanup(request: Optional[CleanupRequest] = None) -> Dict[str, Any]:
        backup_type = request.type if request is not None else None
        try:
            results = service.cleanup(backup_type)
        except BackupError as exc:
            raise _http_error(exc) from exc
        return {
            "results": [result.to_json() for result in results],
            "deletedCount": sum(result.deleted_count for result in results),
        }

    @router.get("/stats")
    def stats() -> Dict[str, Any]:
        return service.stats()

    @router.get("/logs")
    def logs(limit: int = Query(50, ge=1, le=1000)) -> Dict[str, Any]:
        return {"entries": service.logger.tail(limit)}

    return router


__all__ = ["build_router", "error_status"]
