"""Public API for backup operations."""
from __future__ import annotations

import contextlib
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from labcore.db import LiveStore
from labcore.paths import get_catalog_db_path, resolve_working_dir
from labcore.settings import SettingsProvider

from .catalog import BackupCatalog
from .checksum import file_digest
from .errors import (
    BackupError,
    BackupLockTimeout,
    BackupNotFoundError,
    BackupRestoreError,
    CatalogError,
    RestoreRollbackError,
)
from .logs import BackupLogger
from .restore import restore_snapshot
from .retention import cleanup_corrupted, cleanup_excess, remove_backup
from .snapshot import backup_file_name, count_snapshot_records, create_snapshot, unique_path
from .transfer import export_snapshot, import_snapshot, write_catalog_csv
from .types import (
    BackupRecord,
    BackupSummary,
    BackupType,
    OperationResult,
    RetentionSummary,
    VerificationOutcome,
)
from .verify import verify_snapshot

SYSTEM_ACTOR = "System"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _StoreGuard(contextlib.AbstractContextManager):
    """Hold the live store's quiescence lock for one operation."""

    def __init__(self, lock: threading.RLock, logger: BackupLogger, phase: str, timeout: float) -> None:
        self._lock = lock
        self._logger = logger
        self._phase = phase
        self._timeout = timeout

    def __enter__(self) -> None:
        if not self._lock.acquire(timeout=self._timeout):
            self._logger.event(event="store_lock_timeout", phase=self._phase, ok=False, timeout_s=self._timeout)
            raise BackupLockTimeout(
                f"Timed out after {self._timeout:.0f}s waiting for another backup or restore to finish"
            )
        return None

    def __exit__(self, exc_type, exc, tb) -> None:
        self._lock.release()
        return False


class _RecordLocks:
    """One re-entrant lock per backup id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.RLock] = {}

    @contextlib.contextmanager
    def hold(self, backup_id: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(int(backup_id), threading.RLock())
        with lock:
            yield

    def discard(self, backup_id: int) -> None:
        with self._guard:
            self._locks.pop(int(backup_id), None)


class BackupService:
    """Coordinate snapshot creation, verification, restore, and retention.

    The live store handle is owned by the caller; the service only closes
    and reopens it around file-level copies.
    """

    def __init__(
        self,
        store: LiveStore,
        *,
        working_dir: Optional[Path] = None,
        settings: Optional[SettingsProvider] = None,
        catalog: Optional[BackupCatalog] = None,
        logger: Optional[BackupLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._working_dir = Path(working_dir or resolve_working_dir())
        self._settings = settings or SettingsProvider(self._working_dir)
        self._owns_catalog = catalog is None
        self._catalog = catalog or BackupCatalog.open(get_catalog_db_path(self._working_dir))
        self._logger = logger or BackupLogger(self._working_dir)
        self._clock = clock or _utcnow
        self._record_locks = _RecordLocks()

    @classmethod
    def from_working_dir(
        cls,
        working_dir: Optional[Path] = None,
        *,
        settings: Optional[SettingsProvider] = None,
    ) -> "BackupService":
        base = Path(working_dir or resolve_working_dir())
        settings = settings or SettingsProvider(base)
        return cls(LiveStore(settings.get_store_path()), working_dir=base, settings=settings)

    # ------------------------------------------------------------------
    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def store(self) -> LiveStore:
        return self._store

    @property
    def catalog(self) -> BackupCatalog:
        return self._catalog

    def close(self) -> None:
        if self._owns_catalog:
            self._catalog.close()

    def __enter__(self) -> "BackupService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    def _now(self) -> datetime:
        return self._clock()

    def _quiesce(self, phase: str) -> _StoreGuard:
        return _StoreGuard(self._store.quiesce_lock, self._logger, phase, self._settings.get_lock_timeout())

    def _require(self, backup_id: int) -> BackupRecord:
        record = self._catalog.get(backup_id)
        if record is None:
            raise BackupNotFoundError(f"Backup {backup_id} not found")
        return record

    def _verify_record(self, record: BackupRecord, actor: str) -> VerificationOutcome:
        with self._record_locks.hold(int(record.id or 0)):
            outcome = verify_snapshot(record, logger=self._logger)
            record.apply_verification(outcome, actor=actor or SYSTEM_ACTOR, when=self._now())
            self._catalog.update(record)
        return outcome

    def _register(
        self,
        path: Path,
        *,
        backup_type: BackupType,
        description: str,
        actor: str,
        when: datetime,
    ) -> BackupRecord:
        """Fingerprint *path*, insert its catalog row and verify it.

        The file is removed again when no row could be written.
        """

        try:
            record = BackupRecord(
                file_name=path.name,
                file_path=path,
                file_size_bytes=path.stat().st_size,
                backup_date=when,
                backup_type=backup_type,
                checksum=file_digest(path),
                created_by=actor,
                description=description or f"{backup_type.value} backup",
                record_count=count_snapshot_records(path),
            )
            self._catalog.insert(record)
        except (BackupError, OSError):
            path.unlink(missing_ok=True)
            raise
        self._logger.event(
            event="backup_registered",
            phase="create",
            ok=True,
            id=record.id,
            type=backup_type.value,
            path=str(path),
            size=record.file_size_bytes,
        )
        self._verify_record(record, actor)
        return record

    def _create_locked(self, description: str, backup_type: BackupType, actor: str) -> BackupRecord:
        when = self._now()
        directory = self._settings.get_backup_directory()
        directory.mkdir(parents=True, exist_ok=True)
        name = backup_file_name(self._settings.get_file_prefix(), self._settings.get_file_extension(), when)
        destination = unique_path(directory, name)
        self._logger.event(event="backup_start", phase="create", ok=True, dest=str(destination))
        create_snapshot(self._store, destination, logger=self._logger)
        return self._register(
            destination,
            backup_type=backup_type,
            description=description,
            actor=actor,
            when=when,
        )

    @staticmethod
    def _created_result(record: BackupRecord, verb: str) -> OperationResult:
        if record.is_corrupted:
            return OperationResult(
                False,
                f"Backup {record.file_name} {verb} but failed verification: {record.error_message}",
                record,
            )
        return OperationResult(True, f"Backup {record.file_name} {verb}", record)

    # ------------------------------------------------------------------
    def create_backup(
        self,
        description: str = "",
        backup_type: BackupType | str = BackupType.MANUAL,
        actor: str = "",
    ) -> OperationResult:
        kind = BackupType.parse(backup_type)
        try:
            with self._quiesce("create"):
                record = self._create_locked(description, kind, actor)
        except (BackupError, OSError) as exc:
            self._logger.event(event="backup_complete", phase="create", ok=False, error=str(exc))
            return OperationResult(False, f"Backup failed: {exc}")
        return self._created_result(record, "created")

    def verify_backup(self, backup_id: int, actor: str = "") -> OperationResult:
        try:
            record = self._require(backup_id)
            outcome = self._verify_record(record, actor)
        except BackupError as exc:
            return OperationResult(False, str(exc))
        if not outcome.valid:
            return OperationResult(False, f"Backup {backup_id} is corrupted: {outcome.reason}", record)
        if record.is_corrupted:
            return OperationResult(
                False,
                f"Backup {backup_id} passed its checks but remains marked corrupted: {record.error_message}",
                record,
            )
        return OperationResult(True, f"Backup {backup_id} verified", record)

    def verify_all(self, actor: str = SYSTEM_ACTOR) -> OperationResult:
        try:
            records = self._catalog.list_all()
        except CatalogError as exc:
            return OperationResult(False, str(exc))
        bad = 0
        for record in records:
            try:
                self._verify_record(record, actor)
            except CatalogError as exc:
                self._logger.error("verify_all_update_failed", id=record.id, error=str(exc))
            if record.is_corrupted:
                bad += 1
        message = f"{len(records)} backups checked, {bad} corrupted"
        return OperationResult(bad == 0, message)

    def restore_backup(self, backup_id: int, actor: str = "") -> OperationResult:
        """Restore a verified backup over the live store.

        ``RestoreRollbackError`` is never converted into a result: it means
        the live file could not be put back and is re-raised to the caller.
        """

        try:
            record = self._require(backup_id)
        except BackupError as exc:
            return OperationResult(False, str(exc))
        if record.is_corrupted:
            self._logger.warning("restore_refused", id=backup_id, reason="corrupted")
            return OperationResult(False, f"Backup {backup_id} is marked corrupted and cannot be restored", record)

        try:
            with self._quiesce("restore"), self._record_locks.hold(backup_id):
                return self._restore_locked(backup_id, actor)
        except RestoreRollbackError as exc:
            self._logger.event(event="backup_restored", phase="restore", ok=False, id=backup_id, fatal=True, error=str(exc))
            raise
        except (BackupError, OSError) as exc:
            self._logger.event(event="backup_restored", phase="restore", ok=False, id=backup_id, error=str(exc))
            return OperationResult(False, f"Restore failed: {exc}", record)

    def _restore_locked(self, backup_id: int, actor: str) -> OperationResult:
        record = self._require(backup_id)
        if record.is_corrupted:
            return OperationResult(False, f"Backup {backup_id} is marked corrupted and cannot be restored", record)

        # The cached status may be stale; check the file again right before the swap.
        outcome = verify_snapshot(record, logger=self._logger)
        if not outcome.valid:
            record.apply_verification(outcome, actor=actor or SYSTEM_ACTOR, when=self._now())
            self._catalog.update(record)
            return OperationResult(False, f"Backup {backup_id} failed verification: {outcome.reason}", record)

        if self._settings.pre_restore_backup_enabled() and self._store.get_file_path().exists():
            try:
                safety = self._create_locked("Automatic backup before restore", BackupType.AUTOMATIC, actor)
            except (BackupError, OSError) as exc:
                return OperationResult(False, f"Restore aborted, pre-restore backup failed: {exc}", record)
            self._logger.info("pre_restore_backup", id=safety.id, path=str(safety.file_path))

        try:
            restore_snapshot(self._store, record.file_path, logger=self._logger)
        except BackupRestoreError as exc:
            record.error_message = str(exc)
            try:
                self._catalog.update(record)
            except CatalogError as catalog_exc:
                self._logger.error("catalog_update_failed", id=backup_id, error=str(catalog_exc))
            raise
        self._logger.event(event="backup_restored", phase="restore", ok=True, id=backup_id, actor=actor)
        return OperationResult(True, f"Backup {backup_id} restored", record)

    def delete_backup(self, backup_id: int, actor: str = "") -> OperationResult:
        try:
            with self._record_locks.hold(backup_id):
                record = self._require(backup_id)
                remove_backup(self._catalog, record, logger=self._logger)
        except (BackupError, OSError) as exc:
            return OperationResult(False, f"Delete failed: {exc}")
        self._record_locks.discard(backup_id)
        self._logger.info("backup_deleted", id=backup_id, actor=actor)
        return OperationResult(True, f"Backup {backup_id} deleted", record)

    # ------------------------------------------------------------------
    def get_backup(self, backup_id: int) -> Optional[BackupRecord]:
        return self._catalog.get(backup_id)

    def list_backups(self) -> List[BackupRecord]:
        return self._catalog.list_all()

    def list_by_date_range(self, start: datetime, end: datetime) -> List[BackupRecord]:
        return self._catalog.list_by_date_range(start, end)

    def list_by_type(self, backup_type: BackupType | str) -> List[BackupRecord]:
        return self._catalog.list_by_type(backup_type)

    def total_size(self) -> int:
        return self._catalog.total_size()

    def summary(self) -> BackupSummary:
        records = self._catalog.list_all()
        dates = [record.backup_date for record in records]
        return BackupSummary(
            count=len(records),
            valid_count=sum(1 for record in records if record.is_verified and not record.is_corrupted),
            corrupted_count=sum(1 for record in records if record.is_corrupted),
            unverified_count=sum(1 for record in records if not record.is_verified),
            total_size_bytes=sum(record.file_size_bytes for record in records),
            latest=max(dates) if dates else None,
            oldest=min(dates) if dates else None,
        )

    def describe_backup(self, backup_id: int) -> str:
        record = self._catalog.get(backup_id)
        if record is None:
            return f"Backup {backup_id} not found"
        lines = [
            f"Backup id: {record.id}",
            f"File name: {record.file_name}",
            f"Created: {record.backup_date:%Y-%m-%d %H:%M:%S}",
            f"Type: {record.backup_type.value}",
            f"Size: {record.file_size_formatted}",
            f"Records: {record.record_count:,}",
            f"Status: {record.status_display}",
            f"Created by: {record.created_by}",
        ]
        if record.description:
            lines.append(f"Description: {record.description}")
        if record.verified_date:
            lines.append(f"Verified: {record.verified_date:%Y-%m-%d %H:%M:%S} by {record.verified_by or SYSTEM_ACTOR}")
        if record.error_message:
            lines.append(f"Error: {record.error_message}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    def _locked_remove(self, record: BackupRecord) -> int:
        with self._record_locks.hold(int(record.id or 0)):
            freed = remove_backup(self._catalog, record, logger=self._logger)
        self._record_locks.discard(int(record.id or 0))
        return freed

    def cleanup_excess(self, max_to_keep: Optional[int] = None) -> RetentionSummary:
        keep = self._settings.get_max_backup_files() if max_to_keep is None else int(max_to_keep)
        with self._quiesce("cleanup"):
            return cleanup_excess(self._catalog, keep, logger=self._logger, remover=self._locked_remove)

    def cleanup_corrupted(self) -> RetentionSummary:
        with self._quiesce("cleanup"):
            return cleanup_corrupted(self._catalog, logger=self._logger, remover=self._locked_remove)

    # ------------------------------------------------------------------
    def export_backup(self, backup_id: int, destination: Path, actor: str = "") -> OperationResult:
        try:
            with self._record_locks.hold(backup_id):
                record = self._require(backup_id)
                target = export_snapshot(record, Path(destination))
        except (BackupError, OSError) as exc:
            return OperationResult(False, f"Export failed: {exc}")
        self._logger.info("backup_exported", id=backup_id, dest=str(target), actor=actor)
        return OperationResult(True, f"Backup {backup_id} exported to {target}", record)

    def import_backup(self, source: Path, description: str = "", actor: str = "") -> OperationResult:
        try:
            with self._quiesce("import"):
                destination = import_snapshot(Path(source), self._settings.get_backup_directory())
                self._logger.info("backup_imported", source=str(source), dest=str(destination), actor=actor)
                record = self._register(
                    destination,
                    backup_type=BackupType.IMPORTED,
                    description=description,
                    actor=actor,
                    when=self._now(),
                )
        except (BackupError, OSError) as exc:
            self._logger.event(event="backup_imported", phase="import", ok=False, source=str(source), error=str(exc))
            return OperationResult(False, f"Import failed: {exc}")
        return self._created_result(record, "imported")

    def export_catalog_csv(self, output_path: Path) -> OperationResult:
        try:
            count = write_catalog_csv(self._catalog.list_all(), Path(output_path))
        except (BackupError, OSError) as exc:
            return OperationResult(False, f"Export of backup list failed: {exc}")
        return OperationResult(True, f"{count} backups written to {output_path}")

    # ------------------------------------------------------------------
    def is_scheduled_backup_due(self, now: Optional[datetime] = None) -> bool:
        if not self._settings.auto_backup_enabled():
            return False
        current = now or self._now()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        latest = self._catalog.list_by_type(BackupType.SCHEDULED)
        if not latest:
            return True
        interval = timedelta(hours=self._settings.get_auto_backup_interval_hours())
        return current - latest[0].backup_date >= interval

    def run_scheduled_backup(self, actor: str = SYSTEM_ACTOR) -> OperationResult:
        """Create a Scheduled backup and trim the catalog to the retention limit."""

        result = self.create_backup("Scheduled backup", BackupType.SCHEDULED, actor)
        if result.record is None:
            return result
        try:
            self.cleanup_excess()
        except BackupError as exc:
            self._logger.error("scheduled_cleanup_failed", error=str(exc))
        return result

    # ------------------------------------------------------------------
    @staticmethod
    def test_directory_access(path: Path) -> bool:
        directory = Path(path)
        probe = directory / "test_access.tmp"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            probe.write_text("test", encoding="utf-8")
            probe.unlink()
        except OSError:
            return False
        return os.access(directory, os.W_OK)

    def set_backup_directory(self, path: Path) -> OperationResult:
        if not self.test_directory_access(path):
            return OperationResult(False, f"Backup directory {path} is not writable")
        try:
            self._settings.set_backup_directory(Path(path))
        except OSError as exc:
            return OperationResult(False, f"Could not save settings: {exc}")
        return OperationResult(True, f"Backup directory set to {path}")

    def schedule_auto_backup(self, enabled: bool, interval_hours: int = 24) -> OperationResult:
        try:
            self._settings.set_auto_backup(enabled, interval_hours)
        except OSError as exc:
            return OperationResult(False, f"Could not save settings: {exc}")
        if not enabled:
            return OperationResult(True, "Automatic backups disabled")
        hours = self._settings.get_auto_backup_interval_hours()
        return OperationResult(True, f"Automatic backups every {hours} hours")


__all__ = [
    "BackupError",
    "BackupService",
    "OperationResult",
    "RestoreRollbackError",
]
