"""Standalone HTTP host for the backup router and scheduler."""
from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Header, HTTPException, status

from orchestrator.scheduler import BackupScheduler

from .api import BackupService
from .routes import build_router

LOGGER = logging.getLogger("backupengine.server")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 27190


class APIKeyAuth:
    """Dependency enforcing a static API key provided via ``X-API-Key`` header."""

    def __init__(self, expected_key: Optional[str]) -> None:
        self._expected = (expected_key or "").strip()

    def __call__(self, x_api_key: Optional[str] = Header(None)) -> str:
        if not self._expected:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="API key is not configured.",
            )
        if not x_api_key or not secrets.compare_digest(x_api_key.strip(), self._expected):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API key.",
            )
        return self._expected


def resolve_bind_host(candidate: Optional[str]) -> str:
    host = (candidate or DEFAULT_HOST).strip() or DEFAULT_HOST
    norm = host.lower()
    if norm in {"localhost", "::1"}:
        return "127.0.0.1"
    if norm.startswith("127."):
        return host
    raise ValueError(f"Refusing to bind backup API to non-loopback host '{candidate}'.")


def create_app(
    service: BackupService,
    scheduler: Optional[BackupScheduler] = None,
    *,
    api_key: Optional[str] = None,
) -> FastAPI:
    """Build the app; the scheduler starts and stops with the app lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if scheduler is not None:
            scheduler.initialize()
            LOGGER.info("backup scheduler started with %d jobs", len(scheduler.job_names()))
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()

    app = FastAPI(title="Backup Engine", docs_url="/docs", openapi_url="/openapi.json", lifespan=lifespan)
    app.include_router(build_router(service, scheduler, dependencies=[APIKeyAuth(api_key)]))
    return app


__all__ = ["APIKeyAuth", "DEFAULT_HOST", "DEFAULT_PORT", "create_app", "resolve_bind_host"]
