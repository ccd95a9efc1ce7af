"""SQLite persistence for backup metadata records."""
from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from labcore.db import connect

from .errors import CatalogError
from .types import BackupRecord, BackupType, VerificationStatus

_BACKUP_RECORDS_SQL = """
CREATE TABLE IF NOT EXISTS backup_records (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  file_name TEXT NOT NULL,
  file_path TEXT NOT NULL,
  file_size_bytes INTEGER NOT NULL,
  backup_date TEXT NOT NULL,
  backup_type TEXT NOT NULL,
  created_by TEXT NOT NULL DEFAULT '',
  description TEXT NOT NULL DEFAULT '',
  checksum TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'unverified',
  verified_date TEXT,
  verified_by TEXT,
  error_message TEXT,
  record_count INTEGER NOT NULL DEFAULT 0,
  database_version INTEGER NOT NULL DEFAULT 1
)
"""

_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_backup_records_date ON backup_records(backup_date)"

_COLUMNS = (
    "id, file_name, file_path, file_size_bytes, backup_date, backup_type, created_by, description, "
    "checksum, status, verified_date, verified_by, error_message, record_count, database_version"
)

_ORDER = "ORDER BY backup_date DESC, id DESC"


def to_utc_text(value: datetime) -> str:
    """Serialize *value* so that lexical order equals chronological order."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_record(row: Tuple[Any, ...]) -> BackupRecord:
    return BackupRecord(
        id=int(row[0]),
        file_name=str(row[1]),
        file_path=Path(row[2]),
        file_size_bytes=int(row[3]),
        backup_date=_parse_time(row[4]) or datetime.fromtimestamp(0, tz=timezone.utc),
        backup_type=BackupType.parse(row[5]),
        created_by=row[6] or "",
        description=row[7] or "",
        checksum=str(row[8]),
        status=VerificationStatus(row[9]),
        verified_date=_parse_time(row[10]),
        verified_by=row[11],
        error_message=row[12],
        record_count=int(row[13] or 0),
        database_version=int(row[14] or 1),
    )


class BackupCatalog:
    """CRUD boundary over the ``backup_records`` table.

    Holds a single connection; pass ``sqlite3.connect(":memory:")`` for an
    in-memory catalog.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self._lock = threading.RLock()
        try:
            with self._lock:
                self.conn.execute(_BACKUP_RECORDS_SQL)
                self.conn.execute(_INDEX_SQL)
                self.conn.commit()
        except sqlite3.Error as exc:
            raise CatalogError(f"cannot prepare backup catalog: {exc}") from exc

    @classmethod
    def open(cls, path: Path) -> "BackupCatalog":
        try:
            conn = connect(path, read_only=False)
        except sqlite3.Error as exc:
            raise CatalogError(f"cannot open backup catalog at {path}: {exc}") from exc
        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # ------------------------------------------------------------------
    def _query(self, sql: str, params: Tuple[Any, ...] = ()) -> List[BackupRecord]:
        try:
            with self._lock:
                rows = self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise CatalogError(f"catalog query failed: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    def _write(self, sql: str, params: Tuple[Any, ...]) -> sqlite3.Cursor:
        try:
            with self._lock:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
                return cursor
        except sqlite3.Error as exc:
            with self._lock:
                self.conn.rollback()
            raise CatalogError(f"catalog write failed: {exc}") from exc

    # ------------------------------------------------------------------
    def insert(self, record: BackupRecord) -> BackupRecord:
        cursor = self._write(
            """
            INSERT INTO backup_records(
                file_name, file_path, file_size_bytes, backup_date, backup_type, created_by,
                description, checksum, status, verified_date, verified_by, error_message,
                record_count, database_version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.file_name,
                str(record.file_path),
                int(record.file_size_bytes),
                to_utc_text(record.backup_date),
                record.backup_type.value,
                record.created_by,
                record.description,
                record.checksum,
                record.status.value,
                to_utc_text(record.verified_date) if record.verified_date else None,
                record.verified_by,
                record.error_message,
                int(record.record_count),
                int(record.database_version),
            ),
        )
        record.id = int(cursor.lastrowid)
        return record

    def update(self, record: BackupRecord) -> None:
        """Persist mutable fields. The checksum and file identity never change."""

        if record.id is None:
            raise CatalogError("cannot update a record that was never inserted")
        cursor = self._write(
            """
            UPDATE backup_records
               SET description=?, status=?, verified_date=?, verified_by=?,
                   error_message=?, record_count=?
             WHERE id=?
            """,
            (
                record.description,
                record.status.value,
                to_utc_text(record.verified_date) if record.verified_date else None,
                record.verified_by,
                record.error_message,
                int(record.record_count),
                int(record.id),
            ),
        )
        if cursor.rowcount == 0:
            raise CatalogError(f"backup {record.id} is not in the catalog")

    def get(self, backup_id: int) -> Optional[BackupRecord]:
        rows = self._query(f"SELECT {_COLUMNS} FROM backup_records WHERE id=?", (int(backup_id),))
        return rows[0] if rows else None

    def list_all(self) -> List[BackupRecord]:
        return self._query(f"SELECT {_COLUMNS} FROM backup_records {_ORDER}")

    def list_by_date_range(self, start: datetime, end: datetime) -> List[BackupRecord]:
        return self._query(
            f"SELECT {_COLUMNS} FROM backup_records WHERE backup_date >= ? AND backup_date <= ? {_ORDER}",
            (to_utc_text(start), to_utc_text(end)),
        )

    def list_by_type(self, backup_type: BackupType | str) -> List[BackupRecord]:
        kind = BackupType.parse(backup_type)
        return self._query(
            f"SELECT {_COLUMNS} FROM backup_records WHERE backup_type=? {_ORDER}",
            (kind.value,),
        )

    def list_corrupted(self) -> List[BackupRecord]:
        return self._query(
            f"SELECT {_COLUMNS} FROM backup_records WHERE status=? {_ORDER}",
            (VerificationStatus.CORRUPTED.value,),
        )

    def delete(self, backup_id: int) -> bool:
        cursor = self._write("DELETE FROM backup_records WHERE id=?", (int(backup_id),))
        return cursor.rowcount > 0

    def total_size(self) -> int:
        try:
            with self._lock:
                row = self.conn.execute("SELECT COALESCE(SUM(file_size_bytes), 0) FROM backup_records").fetchone()
        except sqlite3.Error as exc:
            raise CatalogError(f"catalog query failed: {exc}") from exc
        return int(row[0]) if row else 0


__all__ = ["BackupCatalog", "to_utc_text"]
