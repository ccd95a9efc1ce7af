from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional

__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "LiveStore",
    "connect",
    "configure_connection",
    "count_user_rows",
]

DEFAULT_BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: str | Path,
    *,
    read_only: bool = False,
    wal: bool = True,
    timeout: float = 5.0,
    isolation_level: Optional[str] = None,
    check_same_thread: bool = False,
) -> sqlite3.Connection:
    """Return a configured SQLite connection with sane defaults."""

    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    if read_only:
        uri = f"file:{path.resolve().as_posix()}?mode=ro"
        conn = sqlite3.connect(
            uri,
            uri=True,
            timeout=timeout,
            isolation_level=isolation_level,
            check_same_thread=check_same_thread,
        )
    else:
        conn = sqlite3.connect(
            str(path),
            timeout=timeout,
            isolation_level=isolation_level,
            check_same_thread=check_same_thread,
        )
    configure_connection(conn, enable_wal=wal and not read_only)
    return conn


def configure_connection(conn: sqlite3.Connection, *, enable_wal: bool = True) -> None:
    conn.execute(f"PRAGMA busy_timeout={int(DEFAULT_BUSY_TIMEOUT_MS)}")
    if enable_wal:
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.DatabaseError:
            pass
    try:
        conn.execute("PRAGMA foreign_keys=ON")
    except sqlite3.DatabaseError:
        pass


def count_user_rows(conn: sqlite3.Connection) -> int:
    """Sum row counts over every user table. Advisory only."""

    total = 0
    tables = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
    ).fetchall()
    for (name,) in tables:
        quoted = '"' + str(name).replace('"', '""') + '"'
        row = conn.execute(f"SELECT COUNT(*) FROM {quoted}").fetchone()
        if row and row[0] is not None:
            total += int(row[0])
    return total


class LiveStore:
    """Handle on the application's single-file SQLite store.

    The store is kept in rollback-journal mode so that the database is a
    single file on disk whenever the connection is closed. ``open`` and
    ``close`` are idempotent.
    """

    def __init__(self, db_path: str | Path, *, timeout: float = 5.0) -> None:
        self._path = Path(db_path)
        self._timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        # Held by whoever keeps the store closed for a file-level copy.
        self.quiesce_lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def get_file_path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        return self.open()

    def open(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._conn = connect(self._path, wal=False, timeout=self._timeout)
            return self._conn

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            if conn is not None:
                conn.close()

    def probe(self) -> int:
        """Run a trivial metadata query against the open store."""

        row = self.open().execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'").fetchone()
        return int(row[0]) if row else 0

    def __enter__(self) -> "LiveStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
