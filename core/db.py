from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Callable, Dict, List, Optional

__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "SQLITE_HEADER",
    "backup_sqlite",
    "configure_connection",
    "connect",
    "count_rows",
    "list_tables",
    "quick_check",
]

DEFAULT_BUSY_TIMEOUT_MS = 5000
SQLITE_HEADER = b"SQLite format 3\x00"

ProgressFn = Callable[[int, int, int], None]


def connect(
    db_path: str | Path,
    *,
    read_only: bool = False,
    timeout: float = 5.0,
    enable_wal: bool = False,
    check_same_thread: bool = False,
) -> sqlite3.Connection:
    """Return a configured SQLite connection.

    Read-only connections never create the file; they fail if it is missing.
    """

    path = Path(db_path)
    if read_only:
        uri = f"file:{path.resolve().as_posix()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=timeout, check_same_thread=check_same_thread)
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), timeout=timeout, check_same_thread=check_same_thread)
    configure_connection(conn, enable_wal=enable_wal and not read_only)
    return conn


def configure_connection(conn: sqlite3.Connection, *, enable_wal: bool = False) -> None:
    conn.execute(f"PRAGMA busy_timeout={int(DEFAULT_BUSY_TIMEOUT_MS)}")
    if enable_wal:
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.DatabaseError:
            pass


def backup_sqlite(
    source: sqlite3.Connection | str | Path,
    destination: sqlite3.Connection | str | Path,
    *,
    pages: int = 0,
    progress: Optional[ProgressFn] = None,
) -> None:
    """Copy *source* into *destination* with the SQLite online backup API.

    The copy is taken under SQLite's own locking, so a writer holding the
    database past the busy timeout surfaces as ``sqlite3.OperationalError``
    rather than a torn file. Exceptions raised by *progress* abort the copy.
    """

    own_source = False
    own_destination = False
    if isinstance(source, (str, Path)):
        source_conn = connect(source, read_only=True)
        own_source = True
    else:
        source_conn = source
    if isinstance(destination, (str, Path)):
        destination_conn = connect(destination, read_only=False)
        own_destination = True
    else:
        destination_conn = destination
    try:
        source_conn.backup(destination_conn, pages=pages, progress=progress)
    finally:
        if own_destination:
            destination_conn.close()
        if own_source:
            source_conn.close()


def quick_check(conn: sqlite3.Connection) -> Optional[str]:
    """Return ``None`` when ``PRAGMA quick_check`` passes, else the first problem reported."""

    row = conn.execute("PRAGMA quick_check").fetchone()
    if row and str(row[0]).lower() != "ok":
        return str(row[0])
    return None


def list_tables(conn: sqlite3.Connection) -> List[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
    ).fetchall()
    return [str(row[0]) for row in rows]


def count_rows(conn: sqlite3.Connection, tables: List[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for table in tables:
        quoted = table.replace('"', '""')
        row = conn.execute(f'SELECT COUNT(*) FROM "{quoted}"').fetchone()
        counts[table] = int(row[0]) if row else 0
    return counts
