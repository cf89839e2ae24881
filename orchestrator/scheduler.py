"""Cron scheduler for backup and cleanup jobs."""
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from backup.api import BackupService
from backup.config import BackupConfig, validate_cron
from backup.errors import AlreadyRunningError, BackupError, UnknownJobError
from backup.notify import EVENT_FAILURE, EVENT_SUCCESS, Notifier, build_notifier, should_notify, summarize

from .registry import JobRegistry, JobSpec, build_default_registry

LOGGER = logging.getLogger("backupengine.scheduler")

JOB_IDLE = "idle"
JOB_RUNNING = "running"
JOB_ERROR = "error"

_JOB_DEFAULTS = {
    "coalesce": True,
    # overlapping firings reach the per-job lock
    "max_instances": 2,
    "misfire_grace_time": 300,
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(slots=True)
class JobStatus:
    name: str
    schedule: str
    active: bool = False
    status: str = JOB_IDLE
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    duration_ms: Optional[int] = None
    last_error: Optional[str] = None
    run_count: int = 0
    skipped_runs: int = 0
    last_skipped: Optional[datetime] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schedule": self.schedule,
            "active": self.active,
            "status": self.status,
            "lastRun": _iso(self.last_run),
            "nextRun": _iso(self.next_run),
            "duration": self.duration_ms,
            "lastError": self.last_error,
            "runCount": self.run_count,
            "skippedRuns": self.skipped_runs,
            "lastSkipped": _iso(self.last_skipped),
        }


@dataclass(slots=True)
class JobRunOutcome:
    job: str
    ran: bool
    ok: bool
    skipped: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration_ms: int = 0
    result: Optional[Dict[str, Any]] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "ran": self.ran,
            "ok": self.ok,
            "skipped": self.skipped,
            "error": self.error,
            "errorCode": self.error_code,
            "duration": self.duration_ms,
            "result": self.result,
        }


@dataclass(slots=True)
class _ScheduledJob:
    spec: JobSpec
    status: JobStatus
    lock: threading.Lock = dataclasses.field(default_factory=threading.Lock)


class BackupScheduler:
    """Run the registered backup jobs on their cron cadences.

    One instance per host process. Job bodies run on the APScheduler thread
    pool; a manual :meth:`trigger_job` runs in the caller's thread. Each job
    has a non-blocking lock: an invocation that finds the previous one still
    running is dropped and counted in ``skipped_runs``.
    """

    def __init__(
        self,
        config: BackupConfig,
        *,
        service: Optional[BackupService] = None,
        registry: Optional[JobRegistry] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._config = config
        self._service = service or BackupService(config)
        self._registry = registry or build_default_registry()
        self._notifier_override = notifier
        self._notifier: Notifier = notifier or build_notifier(config.notifications)
        self._jobs: Dict[str, _ScheduledJob] = {}
        self._lock = threading.RLock()
        self._scheduler: Optional[BackgroundScheduler] = None

    # ------------------------------------------------------------------
    @property
    def config(self) -> BackupConfig:
        return self._config

    @property
    def service(self) -> BackupService:
        return self._service

    @property
    def running(self) -> bool:
        with self._lock:
            return self._scheduler is not None

    def job_names(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Register every enabled job and start cron firing."""

        with self._lock:
            if self._scheduler is not None:
                return
            scheduler = BackgroundScheduler(timezone=self._config.timezone, job_defaults=dict(_JOB_DEFAULTS))
            scheduler.start()
            try:
                for name, spec in self._registry.all_specs().items():
                    if not spec.enabled(self._config):
                        LOGGER.info("job %s disabled in configuration", name)
                        continue
                    self._add_job(scheduler, name, spec)
            except BackupError:
                scheduler.shutdown(wait=False)
                self._jobs = {}
                raise
            self._scheduler = scheduler
            names = list(self._jobs)
        for name in names:
            self.start_job(name)
        self._service.logger.event(event="scheduler_initialized", phase="schedule", ok=True, jobs=names)

    def _add_job(self, scheduler: BackgroundScheduler, name: str, spec: JobSpec) -> None:
        expression = spec.schedule(self._config)
        trigger = validate_cron(expression, timezone=self._config.timezone)
        # added paused; start_job resumes it
        scheduler.add_job(
            self._run_scheduled,
            trigger,
            args=[name],
            id=name,
            name=spec.description,
            replace_existing=True,
            next_run_time=None,
        )
        self._jobs[name] = _ScheduledJob(spec=spec, status=JobStatus(name=name, schedule=expression))
        LOGGER.info("scheduled job %s with cron %s", name, expression)

    def _get(self, name: str) -> _ScheduledJob:
        with self._lock:
            job = self._jobs.get(name)
        if job is None:
            raise UnknownJobError(f"Unknown job: {name}")
        return job

    def start_job(self, name: str) -> bool:
        job = self._get(name)
        with self._lock:
            if job.status.active:
                return True
            if self._scheduler is not None:
                self._scheduler.resume_job(name)
            job.status.active = True
        LOGGER.info("job %s started", name)
        return True

    def stop_job(self, name: str) -> bool:
        """Pause future firings; a run already in flight completes."""

        job = self._get(name)
        with self._lock:
            if not job.status.active:
                return True
            if self._scheduler is not None:
                self._scheduler.pause_job(name)
            job.status.active = False
        LOGGER.info("job %s stopped", name)
        return True

    def restart_job(self, name: str) -> bool:
        self.stop_job(name)
        return self.start_job(name)

    # ------------------------------------------------------------------
    def trigger_job(self, name: str) -> JobRunOutcome:
        """Run *name* now in the calling thread and return its outcome.

        The job body blocks the caller until it finishes. Call this from a
        worker thread (FastAPI runs sync routes on its threadpool), never from
        an event loop or from inside a job running on the scheduler's pool.
        """

        job = self._get(name)
        LOGGER.info("manual trigger for job %s", name)
        return self._run(job, trigger="manual")

    def _run_scheduled(self, name: str) -> None:
        with self._lock:
            job = self._jobs.get(name)
        if job is None:
            return
        self._run(job, trigger="cron")

    def _skip(self, job: _ScheduledJob, trigger: str, reason: str) -> JobRunOutcome:
        name = job.spec.name
        with self._lock:
            job.status.skipped_runs += 1
            job.status.last_skipped = datetime.now()
        LOGGER.warning("job %s already running; %s invocation dropped", name, trigger)
        self._service.logger.warning("job_skipped", job=name, trigger=trigger, reason=reason)
        return JobRunOutcome(job=name, ran=False, ok=False, skipped=True, error=reason, error_code=AlreadyRunningError.code)

    def _run(self, job: _ScheduledJob, *, trigger: str) -> JobRunOutcome:
        name = job.spec.name
        if not job.lock.acquire(blocking=False):
            return self._skip(job, trigger, "already running")
        try:
            with self._lock:
                previous = (job.status.status, job.status.last_run)
                job.status.status = JOB_RUNNING
                job.status.last_run = datetime.now()
            self._service.logger.event(event="job_start", phase="schedule", ok=True, job=name, trigger=trigger)
            started = time.monotonic()
            result: Any = None
            error: Optional[BaseException] = None
            try:
                result = job.spec.runner(self._service)
            except AlreadyRunningError as exc:
                # the body never ran: keep the prior outcome visible
                with self._lock:
                    job.status.status, job.status.last_run = previous
                return self._skip(job, trigger, str(exc))
            except BackupError as exc:
                error = exc
            except Exception as exc:  # a job body must never take the scheduler down
                LOGGER.exception("job %s raised unexpectedly", name)
                error = exc
            duration_ms = int((time.monotonic() - started) * 1000)

            ok = error is None
            with self._lock:
                job.status.duration_ms = duration_ms
                job.status.run_count += 1
                job.status.status = JOB_IDLE if ok else JOB_ERROR
                job.status.last_error = None if ok else str(error)
            summary = summarize(result) if ok else {"error": str(error)}
            self._service.logger.event(
                event="job_complete",
                phase="schedule",
                ok=ok,
                job=name,
                trigger=trigger,
                duration_ms=duration_ms,
                error=None if ok else str(error),
            )
            self._notify(name, ok, summary)
            return JobRunOutcome(
                job=name,
                ran=True,
                ok=ok,
                error=None if ok else str(error),
                error_code=None if ok else getattr(error, "code", "internal_error"),
                duration_ms=duration_ms,
                result=summary if ok else None,
            )
        finally:
            job.lock.release()

    def _notify(self, name: str, ok: bool, summary: Dict[str, Any]) -> None:
        if not should_notify(self._config.notifications, ok):
            return
        try:
            self._notifier.notify(EVENT_SUCCESS if ok else EVENT_FAILURE, name, summary)
        except Exception:  # notification failures never fail the job
            LOGGER.exception("notification for job %s failed", name)

    # ------------------------------------------------------------------
    def get_status(self, name: str) -> JobStatus:
        job = self._get(name)
        with self._lock:
            snapshot = dataclasses.replace(job.status)
            scheduled = self._scheduler.get_job(name) if self._scheduler is not None else None
        snapshot.next_run = scheduled.next_run_time if scheduled is not None and snapshot.active else None
        return snapshot

    def get_all_statuses(self) -> List[JobStatus]:
        return [self.get_status(name) for name in self.job_names()]

    # ------------------------------------------------------------------
    def update_config(self, config: BackupConfig) -> None:
        """Swap in a new configuration and re-register every job."""

        LOGGER.info("reloading scheduler configuration")
        self.shutdown()
        with self._lock:
            self._config = config
            if self._notifier_override is None:
                self._notifier = build_notifier(config.notifications)
        self._service.update_config(config)
        self.initialize()

    def shutdown(self) -> None:
        """Stop firing, ask in-flight work to cancel, and forget every job."""

        with self._lock:
            scheduler = self._scheduler
            self._scheduler = None
            for job in self._jobs.values():
                job.status.active = False
            self._jobs = {}
        cancelled = self._service.cancel_running()
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        LOGGER.info("backup scheduler shut down", extra={"cancelled": cancelled})


__all__ = ["BackupScheduler", "JOB_ERROR", "JOB_IDLE", "JOB_RUNNING", "JobRunOutcome", "JobStatus"]
