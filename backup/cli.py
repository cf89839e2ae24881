from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

import uvicorn

from core.logging_utils import configure_json_logging
from orchestrator.scheduler import BackupScheduler

from .api import BackupService
from .artifacts import format_size
from .errors import BackupError
from .server import DEFAULT_PORT, create_app, resolve_bind_host


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m backup", description="Back up and restore the application data store")
    parser.add_argument("--working-dir", type=Path, default=None, help="Directory holding settings.json (default: cwd)")
    parser.add_argument("--verbose", action="store_true", help="Log to stderr")
    commands = parser.add_subparsers(dest="command", required=True)

    database = commands.add_parser("database", help="Snapshot the SQLite store")
    database.add_argument("--no-compress", action="store_true", help="Keep the raw .db instead of a ZIP")
    database.add_argument("--path", type=Path, default=None, help="Write the artifact to this directory")

    commands.add_parser("files", help="Archive the configured directories")

    listing = commands.add_parser("list", help="List artifacts, newest first")
    listing.add_argument("--type", choices=("database", "files"), default=None)

    verify = commands.add_parser("verify", help="Verify an artifact")
    verify.add_argument("path", type=Path)
    verify.add_argument("--type", choices=("database", "files"), default=None)

    cleanup = commands.add_parser("cleanup", help="Delete artifacts past retention")
    cleanup.add_argument("--type", choices=("database", "files"), default=None)

    restore_db = commands.add_parser("restore-database", help="Replace the live database with a snapshot")
    restore_db.add_argument("path", type=Path)

    restore_files = commands.add_parser("restore-files", help="Extract a files archive")
    restore_files.add_argument("path", type=Path)
    restore_files.add_argument("--target", type=Path, default=None, help="Extraction directory (default: files root)")

    commands.add_parser("stats", help="Show artifact counts and sizes")

    serve = commands.add_parser("serve", help="Run the scheduler and the HTTP API until interrupted")
    serve.add_argument("--host", default=None, help="Loopback bind host (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=DEFAULT_PORT)
    serve.add_argument("--api-key", dest="api_key", default=None, help="X-API-Key value (default: $BACKUP_API_KEY)")
    return parser


def _run(service: BackupService, args: argparse.Namespace) -> int:
    if args.command == "database":
        result = service.create_database_backup(
            compression=False if args.no_compress else None,
            storage_path=args.path,
        )
        _print(result.to_json())
    elif args.command == "files":
        _print(service.create_files_backup().to_json())
    elif args.command == "list":
        for item in service.list_backups(args.type):
            print(f"{item.created:%Y-%m-%d %H:%M:%S}  {item.type:<8}  {format_size(item.size):>10}  {item.path}")
    elif args.command == "verify":
        result = service.verify_backup(args.path, args.type)
        _print(result.to_json())
        return 0 if result.valid else 1
    elif args.command == "cleanup":
        _print([result.to_json() for result in service.cleanup(args.type)])
    elif args.command == "restore-database":
        result = service.restore_database(args.path)
        _print(result.to_json())
        print("Restart the application to reopen the restored database.", file=sys.stderr)
    elif args.command == "restore-files":
        _print(service.restore_files(args.path, args.target).to_json())
    elif args.command == "stats":
        _print(service.stats())
    elif args.command == "serve":
        return _serve(service, args)
    return 0


def _serve(service: BackupService, args: argparse.Namespace) -> int:
    try:
        host = resolve_bind_host(args.host)
    except ValueError as exc:
        logging.error("%s", exc)
        return 2
    api_key = args.api_key or os.environ.get("BACKUP_API_KEY")
    if not api_key:
        logging.warning("API key is not configured; all requests will be rejected with 401.")
    app = create_app(service, BackupScheduler(service.config, service=service), api_key=api_key)
    print(f"Backup API listening on http://{host}:{args.port}", flush=True)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=args.port, log_level="info", access_log=False))
    server.run()
    return 0


def cli(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        service = BackupService.from_working_dir(args.working_dir or Path.cwd())
        configure_json_logging(service.config.logs_path)
        return _run(service, args)
    except BackupError as exc:
        print(json.dumps(exc.to_json(), sort_keys=True), file=sys.stderr)
        return 1


__all__ = ["cli"]
