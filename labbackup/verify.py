"""Verify backup snapshots."""
from __future__ import annotations

import sqlite3
from pathlib import Path

from labcore.db import connect

from .checksum import file_digest
from .errors import (
    BackupVerificationError,
    ChecksumError,
    DigestMismatchError,
    SizeMismatchError,
    StructuralCorruptionError,
)
from .logs import BackupLogger
from .types import BackupRecord, VerificationOutcome


def _structural_check(path: Path) -> None:
    try:
        conn = connect(path, read_only=True)
    except sqlite3.Error as exc:
        raise StructuralCorruptionError(f"snapshot cannot be opened: {exc}") from exc
    try:
        row = conn.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'").fetchone()
        if row is None:
            raise StructuralCorruptionError("snapshot metadata query returned nothing")
        check = conn.execute("PRAGMA quick_check").fetchone()
        if check and str(check[0]).lower() != "ok":
            raise StructuralCorruptionError(f"quick_check failed: {check[0]}")
    except sqlite3.Error as exc:
        raise StructuralCorruptionError(f"snapshot is not a readable database: {exc}") from exc
    finally:
        conn.close()


def check_snapshot(record: BackupRecord) -> None:
    """Raise a ``BackupVerificationError`` subclass on the first failed check."""

    path = Path(record.file_path)
    if not path.is_file():
        raise BackupVerificationError(f"snapshot file missing: {path}")
    actual_size = path.stat().st_size
    if actual_size != int(record.file_size_bytes):
        raise SizeMismatchError(
            f"size mismatch: expected {record.file_size_bytes} bytes, found {actual_size}"
        )
    try:
        actual = file_digest(path)
    except ChecksumError as exc:
        raise BackupVerificationError(str(exc)) from exc
    if actual != record.checksum:
        raise DigestMismatchError("checksum mismatch: snapshot contents changed since creation")
    _structural_check(path)


def verify_snapshot(record: BackupRecord, *, logger: BackupLogger) -> VerificationOutcome:
    try:
        check_snapshot(record)
    except BackupVerificationError as exc:
        logger.event(event="backup_verified", phase="verify", ok=False, id=record.id, error=str(exc))
        return VerificationOutcome.corrupted(str(exc))
    except OSError as exc:
        logger.event(event="backup_verified", phase="verify", ok=False, id=record.id, error=str(exc))
        return VerificationOutcome.corrupted(f"snapshot unreadable: {exc}")
    logger.event(event="backup_verified", phase="verify", ok=True, id=record.id)
    return VerificationOutcome.ok()


__all__ = ["check_snapshot", "verify_snapshot"]
