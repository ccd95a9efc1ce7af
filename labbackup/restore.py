"""Restore snapshots over the live store with automatic rollback."""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Dict

from labcore.db import LiveStore

from .errors import BackupError, BackupRestoreError, RestoreRollbackError, SourceMissingError
from .logs import BackupLogger
from .snapshot import copy_file

ROLLBACK_SUFFIX = ".temp_backup"


def rollback_path_for(live_path: Path) -> Path:
    return live_path.with_name(live_path.name + ROLLBACK_SUFFIX)


def _rollback(live_path: Path, rollback_path: Path, *, had_live: bool, logger: BackupLogger) -> None:
    try:
        if had_live:
            copy_file(rollback_path, live_path)
        else:
            live_path.unlink(missing_ok=True)
    except (BackupError, OSError) as exc:
        logger.error(
            "restore_rollback_failed",
            live=str(live_path),
            rollback=str(rollback_path),
            error=str(exc),
        )
        raise RestoreRollbackError(
            f"rollback of {live_path} failed, previous contents kept at {rollback_path}: {exc}",
            rollback_path=str(rollback_path),
        ) from exc
    logger.warning("restore_rolled_back", live=str(live_path))


def restore_snapshot(store: LiveStore, snapshot_path: Path, *, logger: BackupLogger) -> Dict[str, object]:
    """Swap *snapshot_path* into the live store location.

    The current live file is copied to ``<live>.temp_backup`` first. If the
    copy or the post-restore open check fails, that copy is put back and
    ``BackupRestoreError`` is raised. The store is reopened and the rollback
    file removed on every exit path, except when the rollback itself failed;
    then the rollback file is left in place and ``RestoreRollbackError``
    is raised.
    """

    snapshot = Path(snapshot_path)
    live_path = store.get_file_path()
    if not snapshot.is_file():
        raise SourceMissingError(f"snapshot file not found: {snapshot}")

    rollback_path = rollback_path_for(live_path)
    had_live = live_path.exists()
    keep_rollback = False

    logger.info("quiesce", phase="restore", live=str(live_path))
    store.close()
    try:
        if had_live:
            try:
                copy_file(live_path, rollback_path)
            except BackupError as exc:
                raise BackupRestoreError(f"could not create rollback copy: {exc}") from exc
            logger.info("rollback_point", path=str(rollback_path))

        try:
            copy_file(snapshot, live_path)
            store.open()
            tables = store.probe()
        except (BackupError, OSError, sqlite3.Error) as exc:
            logger.error("restore_failed", snapshot=str(snapshot), error=str(exc))
            store.close()
            try:
                _rollback(live_path, rollback_path, had_live=had_live, logger=logger)
            except RestoreRollbackError:
                keep_rollback = True
                raise
            raise BackupRestoreError(f"restore failed and was rolled back: {exc}") from exc
    finally:
        if not keep_rollback:
            rollback_path.unlink(missing_ok=True)
        store.open()
        logger.info("resume", phase="restore", live=str(live_path))

    logger.event(event="backup_restored", phase="restore", ok=True, snapshot=str(snapshot))
    return {
        "snapshot": str(snapshot),
        "live": str(live_path),
        "tables": tables,
    }


__all__ = ["ROLLBACK_SUFFIX", "restore_snapshot", "rollback_path_for"]
