import csv

from labbackup.transfer import CSV_COLUMNS
from labbackup.types import BackupType


def test_export_copies_file_into_directory(service, tmp_path):
    record = service.create_backup().record
    outbox = tmp_path / "outbox"
    outbox.mkdir()

    result = service.export_backup(record.id, outbox)

    assert result.ok, result.message
    exported = outbox / record.file_name
    assert exported.read_bytes() == record.file_path.read_bytes()
    assert record.file_path.exists()


def test_export_to_explicit_file_name(service, tmp_path):
    record = service.create_backup().record
    target = tmp_path / "copies" / "lab-copy.db"

    assert service.export_backup(record.id, target).ok
    assert target.read_bytes() == record.file_path.read_bytes()


def test_export_missing_snapshot_fails(service, tmp_path):
    record = service.create_backup().record
    record.file_path.unlink()

    result = service.export_backup(record.id, tmp_path / "out.db")

    assert not result.ok
    assert not (tmp_path / "out.db").exists()


def test_import_registers_verified_backup(service, tmp_path, make_store):
    external = tmp_path / "incoming" / "site_b.db"
    make_store(external, rows=2)

    result = service.import_backup(external, "from site B", "dave")

    assert result.ok, result.message
    record = result.record
    assert record.backup_type is BackupType.IMPORTED
    assert record.file_path.parent == service.working_dir / "Backups"
    assert record.file_name == "site_b.db"
    assert record.record_count == 4
    assert record.is_verified and not record.is_corrupted
    assert external.exists()


def test_import_name_collision_gets_suffix(service, tmp_path, make_store):
    external = tmp_path / "incoming" / "site_b.db"
    make_store(external)

    first = service.import_backup(external).record
    second = service.import_backup(external).record

    assert first.file_name == "site_b.db"
    assert second.file_name == "site_b_1.db"
    assert first.file_path.exists() and second.file_path.exists()


def test_import_non_database_is_marked_corrupted(service, tmp_path):
    external = tmp_path / "notes.db"
    external.write_text("this is not a database file\n" * 200, encoding="utf-8")

    result = service.import_backup(external)

    assert not result.ok
    assert result.record is not None
    assert result.record.is_corrupted
    assert service.get_backup(result.record.id).is_corrupted


def test_import_missing_source(service, tmp_path):
    result = service.import_backup(tmp_path / "nope.db")

    assert not result.ok
    assert service.list_backups() == []


def test_export_catalog_csv(service, tmp_path):
    first = service.create_backup("first, with comma").record
    second = service.create_backup("second", actor="erin").record
    output = tmp_path / "reports" / "backups.csv"

    result = service.export_catalog_csv(output)

    assert result.ok
    with open(output, newline="", encoding="utf-8-sig") as handle:
        rows = list(csv.DictReader(handle))
    assert list(rows[0].keys()) == CSV_COLUMNS
    assert [row["BackupId"] for row in rows] == [str(second.id), str(first.id)]
    assert rows[1]["Description"] == "first, with comma"
    assert rows[0]["CreatedBy"] == "erin"
    assert rows[0]["IsVerified"] == "1"
    assert rows[0]["IsCorrupted"] == "0"
    assert rows[0]["BackupType"] == "Manual"
