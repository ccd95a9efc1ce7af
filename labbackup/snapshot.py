"""Point-in-time copies of the live store file."""
from __future__ import annotations

import shutil
import sqlite3
from datetime import datetime
from pathlib import Path

from labcore.db import LiveStore, connect, count_user_rows

from .errors import CopyFailureError, SourceMissingError
from .logs import BackupLogger
from .types import SnapshotResult

_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def backup_file_name(prefix: str, extension: str, when: datetime) -> str:
    return f"{prefix}_Backup_{when.strftime(_TIMESTAMP_FORMAT)}.{extension.lstrip('.')}"


def unique_path(directory: Path, file_name: str) -> Path:
    """Return ``directory/file_name``, appending ``_1``, ``_2``... until unused."""

    candidate = directory / file_name
    stem = Path(file_name).stem
    suffix = Path(file_name).suffix
    counter = 1
    while candidate.exists():
        candidate = directory / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def copy_file(source: Path, dest: Path) -> None:
    """Byte copy *source* to *dest*, removing a partial *dest* on failure."""

    if not source.exists():
        raise SourceMissingError(f"source file not found: {source}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copy2(source, dest)
    except FileNotFoundError as exc:
        dest.unlink(missing_ok=True)
        raise SourceMissingError(f"source file vanished during copy: {source}") from exc
    except OSError as exc:
        try:
            dest.unlink(missing_ok=True)
        except OSError:
            pass
        raise CopyFailureError(f"copy {source} -> {dest} failed: {exc}") from exc


def count_snapshot_records(path: Path) -> int:
    """Advisory row count of a snapshot; never used to judge integrity."""

    try:
        conn = connect(path, read_only=True)
    except sqlite3.Error:
        return 0
    try:
        return count_user_rows(conn)
    except sqlite3.Error:
        return 0
    finally:
        conn.close()


def create_snapshot(store: LiveStore, destination: Path, *, logger: BackupLogger) -> SnapshotResult:
    """Copy the live store file to *destination* inside a quiescence window.

    The store connection is closed for the duration of the copy and reopened
    on every exit path.
    """

    source = store.get_file_path()
    if not source.exists():
        logger.error("snapshot_source_missing", source=str(source))
        raise SourceMissingError(f"live store file not found: {source}")

    logger.info("quiesce", phase="snapshot", source=str(source))
    store.close()
    try:
        source_size = source.stat().st_size
        copy_file(source, destination)
        size = destination.stat().st_size
        if size != source_size:
            destination.unlink(missing_ok=True)
            raise CopyFailureError(
                f"snapshot size {size} does not match live store size {source_size}"
            )
    except FileNotFoundError as exc:
        raise SourceMissingError(f"live store file not found: {source}") from exc
    finally:
        store.open()
        logger.info("resume", phase="snapshot", source=str(source))

    logger.info("snapshot_copied", source=str(source), dest=str(destination), size=size)
    return SnapshotResult(path=destination, size_bytes=size)


__all__ = [
    "backup_file_name",
    "copy_file",
    "count_snapshot_records",
    "create_snapshot",
    "unique_path",
]
