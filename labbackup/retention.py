"""Retention policy enforcement for backups."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .catalog import BackupCatalog
from .errors import BackupError
from .logs import BackupLogger
from .types import BackupRecord, RetentionSummary

Remover = Callable[[BackupRecord], int]


def remove_backup(catalog: BackupCatalog, record: BackupRecord, *, logger: BackupLogger) -> int:
    """Delete the snapshot file and its catalog row. Returns the bytes freed.

    A snapshot file that is already gone is not an error.
    """

    path = Path(record.file_path)
    freed = 0
    try:
        freed = path.stat().st_size
    except FileNotFoundError:
        logger.warning("backup_file_already_missing", id=record.id, path=str(path))
    path.unlink(missing_ok=True)
    if record.id is not None:
        catalog.delete(record.id)
    logger.info("backup_removed", id=record.id, path=str(path), freed=freed)
    return freed


def select_excess(records: Sequence[BackupRecord], max_to_keep: int) -> List[BackupRecord]:
    """Return the records beyond the newest *max_to_keep* by backup date."""

    if max_to_keep < 0:
        raise ValueError("max_to_keep must not be negative")
    ordered = sorted(records, key=lambda item: (item.backup_date, item.id or 0), reverse=True)
    return ordered[max_to_keep:]


def _remove_each(
    records: Sequence[BackupRecord],
    remover: Remover,
    *,
    logger: BackupLogger,
    reason: str,
) -> RetentionSummary:
    summary = RetentionSummary()
    for record in records:
        try:
            summary.freed_bytes += remover(record)
        except (BackupError, OSError) as exc:
            summary.failed.append(int(record.id or 0))
            logger.error("backup_remove_failed", id=record.id, reason=reason, error=str(exc))
            continue
        summary.removed.append(int(record.id or 0))
    logger.event(
        event="retention_applied",
        phase="retention",
        ok=not summary.failed,
        reason=reason,
        removed=len(summary.removed),
        failed=len(summary.failed),
        freed=summary.freed_bytes,
    )
    return summary


def cleanup_excess(
    catalog: BackupCatalog,
    max_to_keep: int,
    *,
    logger: BackupLogger,
    remover: Optional[Remover] = None,
) -> RetentionSummary:
    excess = select_excess(catalog.list_all(), max_to_keep)
    remove = remover or (lambda record: remove_backup(catalog, record, logger=logger))
    return _remove_each(excess, remove, logger=logger, reason="max_backups")


def cleanup_corrupted(
    catalog: BackupCatalog,
    *,
    logger: BackupLogger,
    remover: Optional[Remover] = None,
) -> RetentionSummary:
    remove = remover or (lambda record: remove_backup(catalog, record, logger=logger))
    return _remove_each(catalog.list_corrupted(), remove, logger=logger, reason="corrupted")


__all__ = [
    "cleanup_corrupted",
    "cleanup_excess",
    "remove_backup",
    "select_excess",
]
