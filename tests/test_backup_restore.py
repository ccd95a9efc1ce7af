import sqlite3
import threading
from pathlib import Path

import pytest

from labbackup import restore as restore_module
from labbackup.api import BackupService
from labbackup.errors import CopyFailureError, RestoreRollbackError
from labbackup.restore import rollback_path_for
from labbackup.types import BackupType
from labcore.db import LiveStore
from labcore.settings import SettingsProvider


def _add_patient(store, name: str) -> None:
    store.connection.execute("INSERT INTO patients(name) VALUES (?)", (name,))


def _patient_count(store) -> int:
    return store.connection.execute("SELECT COUNT(*) FROM patients").fetchone()[0]


def _failing_copy(fail_sources):
    real_copy = restore_module.copy_file
    calls = []

    def fake(source: Path, dest: Path) -> None:
        calls.append((Path(source), Path(dest)))
        if Path(source) in fail_sources:
            Path(dest).write_bytes(b"partial")
            raise CopyFailureError(f"simulated failure copying {source}")
        real_copy(source, dest)

    return fake, calls


def test_restore_round_trip_is_byte_identical(service, live_store, store_path):
    record = service.create_backup("baseline").record
    snapshot_bytes = record.file_path.read_bytes()

    _add_patient(live_store, "late arrival")
    assert _patient_count(live_store) == 4

    result = service.restore_backup(record.id, "carol")

    assert result.ok, result.message
    assert store_path.read_bytes() == snapshot_bytes
    assert live_store.is_open
    assert _patient_count(live_store) == 3
    assert not rollback_path_for(store_path).exists()


def test_restore_takes_automatic_backup_first(service, live_store):
    record = service.create_backup().record
    _add_patient(live_store, "late arrival")

    assert service.restore_backup(record.id).ok

    automatic = service.list_by_type(BackupType.AUTOMATIC)
    assert len(automatic) == 1
    safety = automatic[0]
    assert safety.description == "Automatic backup before restore"
    assert safety.is_verified and not safety.is_corrupted
    assert safety.record_count == 7


def test_restore_without_pre_restore_backup(live_store, working_dir, catalog, logger, clock):
    settings = SettingsProvider(working_dir, {"backup": {"pre_restore_backup": False, "lock_timeout_s": 5}})
    service = BackupService(
        live_store, working_dir=working_dir, settings=settings, catalog=catalog, logger=logger, clock=clock
    )
    record = service.create_backup().record

    assert service.restore_backup(record.id).ok
    assert service.list_by_type(BackupType.AUTOMATIC) == []


def test_failed_copy_rolls_back_live_store(service, live_store, store_path, monkeypatch):
    record = service.create_backup().record
    _add_patient(live_store, "late arrival")
    before = store_path.read_bytes()

    fake, calls = _failing_copy({record.file_path})
    monkeypatch.setattr("labbackup.restore.copy_file", fake)

    result = service.restore_backup(record.id)

    assert not result.ok
    assert "rolled back" in result.message
    assert store_path.read_bytes() == before
    assert not rollback_path_for(store_path).exists()
    assert live_store.is_open
    assert _patient_count(live_store) == 4
    assert any(source == record.file_path for source, _ in calls)
    assert "rolled back" in service.get_backup(record.id).error_message


def test_failed_reopen_check_rolls_back_live_store(service, live_store, store_path, monkeypatch):
    record = service.create_backup().record
    _add_patient(live_store, "late arrival")
    before = store_path.read_bytes()

    def broken_probe(self):
        raise sqlite3.DatabaseError("file is not a database")

    monkeypatch.setattr(LiveStore, "probe", broken_probe)

    result = service.restore_backup(record.id)

    assert not result.ok
    assert "rolled back" in result.message
    assert store_path.read_bytes() == before
    assert not rollback_path_for(store_path).exists()
    assert live_store.is_open
    assert _patient_count(live_store) == 4


def test_failed_rollback_is_fatal_and_keeps_temp_file(service, store_path, monkeypatch):
    record = service.create_backup().record
    rollback = rollback_path_for(store_path)

    fake, _ = _failing_copy({record.file_path, rollback})
    monkeypatch.setattr("labbackup.restore.copy_file", fake)

    with pytest.raises(RestoreRollbackError) as excinfo:
        service.restore_backup(record.id)

    assert rollback.exists()
    assert excinfo.value.rollback_path == str(rollback)


def test_corrupted_backup_is_never_copied(service, store_path, monkeypatch):
    record = service.create_backup().record
    data = bytearray(record.file_path.read_bytes())
    data[len(data) // 2] ^= 0xFF
    record.file_path.write_bytes(bytes(data))
    assert not service.verify_backup(record.id).ok
    before = store_path.read_bytes()

    fake, calls = _failing_copy(set())
    monkeypatch.setattr("labbackup.restore.copy_file", fake)

    result = service.restore_backup(record.id)

    assert not result.ok
    assert "corrupted" in result.message
    assert calls == []
    assert store_path.read_bytes() == before


def test_restore_rechecks_file_before_copy(service, store_path, catalog):
    record = service.create_backup().record
    assert record.is_verified and not record.is_corrupted
    data = bytearray(record.file_path.read_bytes())
    data[len(data) // 2] ^= 0xFF
    record.file_path.write_bytes(bytes(data))
    before = store_path.read_bytes()

    result = service.restore_backup(record.id)

    assert not result.ok
    assert "failed verification" in result.message
    assert store_path.read_bytes() == before
    assert catalog.get(record.id).is_corrupted
    assert service.list_by_type(BackupType.AUTOMATIC) == []


def test_restore_unknown_backup(service):
    result = service.restore_backup(404)

    assert not result.ok
    assert "not found" in result.message


def test_backup_waits_for_store_lock(live_store, working_dir, catalog, logger, clock):
    settings = SettingsProvider(working_dir, {"backup": {"lock_timeout_s": 0.2}})
    service = BackupService(
        live_store, working_dir=working_dir, settings=settings, catalog=catalog, logger=logger, clock=clock
    )
    acquired = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with live_store.quiesce_lock:
            acquired.set()
            release.wait(5)

    worker = threading.Thread(target=hold_lock)
    worker.start()
    try:
        assert acquired.wait(5)
        result = service.create_backup()
    finally:
        release.set()
        worker.join()

    assert not result.ok
    assert "Timed out" in result.message
    assert catalog.list_all() == []
