from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from labbackup.catalog import BackupCatalog, to_utc_text
from labbackup.errors import CatalogError
from labbackup.types import BackupRecord, BackupType, VerificationOutcome, VerificationStatus

BASE = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _make(name: str, offset_hours: int, kind: BackupType = BackupType.MANUAL) -> BackupRecord:
    return BackupRecord(
        file_name=name,
        file_path=Path("/backups") / name,
        file_size_bytes=1024 * (offset_hours + 1),
        backup_date=BASE + timedelta(hours=offset_hours),
        backup_type=kind,
        checksum=f"{offset_hours:064x}",
        created_by="tester",
    )


def test_insert_assigns_id_and_round_trips(catalog):
    record = catalog.insert(_make("a.db", 0))

    assert record.id is not None
    stored = catalog.get(record.id)
    assert stored.file_name == "a.db"
    assert stored.file_path == Path("/backups/a.db")
    assert stored.backup_date == BASE
    assert stored.backup_type is BackupType.MANUAL
    assert stored.status is VerificationStatus.UNVERIFIED
    assert stored.checksum == record.checksum


def test_get_unknown_returns_none(catalog):
    assert catalog.get(12345) is None


def test_list_all_is_newest_first(catalog):
    for name, offset in (("mid.db", 1), ("old.db", 0), ("new.db", 2)):
        catalog.insert(_make(name, offset))

    assert [record.file_name for record in catalog.list_all()] == ["new.db", "mid.db", "old.db"]


def test_equal_dates_order_by_id(catalog):
    first = catalog.insert(_make("first.db", 0))
    second = catalog.insert(_make("second.db", 0))

    assert [record.id for record in catalog.list_all()] == [second.id, first.id]


def test_date_range_is_inclusive(catalog):
    for offset in range(5):
        catalog.insert(_make(f"{offset}.db", offset))

    found = catalog.list_by_date_range(BASE + timedelta(hours=1), BASE + timedelta(hours=3))

    assert [record.file_name for record in found] == ["3.db", "2.db", "1.db"]


def test_date_range_accepts_naive_utc(catalog):
    catalog.insert(_make("a.db", 0))

    found = catalog.list_by_date_range(datetime(2024, 5, 1), datetime(2024, 5, 2))

    assert len(found) == 1


def test_list_by_type(catalog):
    catalog.insert(_make("m.db", 0))
    catalog.insert(_make("s.db", 1, BackupType.SCHEDULED))
    catalog.insert(_make("i.db", 2, BackupType.IMPORTED))

    assert [record.file_name for record in catalog.list_by_type("Scheduled")] == ["s.db"]
    assert [record.file_name for record in catalog.list_by_type(BackupType.IMPORTED)] == ["i.db"]


def test_update_keeps_checksum_and_identity(catalog):
    record = catalog.insert(_make("a.db", 0))
    original_checksum = record.checksum
    record.apply_verification(VerificationOutcome.corrupted("bad bytes"), actor="qa", when=BASE)
    record.checksum = "f" * 64
    record.file_name = "renamed.db"

    catalog.update(record)

    stored = catalog.get(record.id)
    assert stored.checksum == original_checksum
    assert stored.file_name == "a.db"
    assert stored.is_corrupted
    assert stored.error_message == "bad bytes"
    assert stored.verified_by == "qa"
    assert stored.verified_date == BASE
    assert [item.id for item in catalog.list_corrupted()] == [record.id]


def test_update_missing_row_raises(catalog):
    record = _make("ghost.db", 0)
    with pytest.raises(CatalogError):
        catalog.update(record)
    record.id = 77
    with pytest.raises(CatalogError):
        catalog.update(record)


def test_delete_and_total_size(catalog):
    first = catalog.insert(_make("a.db", 0))
    catalog.insert(_make("b.db", 1))

    assert catalog.total_size() == 1024 + 2048
    assert catalog.delete(first.id) is True
    assert catalog.delete(first.id) is False
    assert catalog.total_size() == 2048


def test_catalog_file_persists(tmp_path):
    path = tmp_path / "data" / "backup_catalog.db"
    catalog = BackupCatalog.open(path)
    record = catalog.insert(_make("a.db", 0))
    catalog.close()

    reopened = BackupCatalog.open(path)
    try:
        assert reopened.get(record.id).file_name == "a.db"
    finally:
        reopened.close()


def test_to_utc_text_sorts_chronologically():
    earlier = to_utc_text(datetime(2024, 1, 1, 23, 0, tzinfo=timezone(timedelta(hours=-5))))
    later = to_utc_text(datetime(2024, 1, 2, 3, 30, tzinfo=timezone.utc))

    assert earlier == "2024-01-02T04:00:00.000000+00:00"
    assert earlier > later
