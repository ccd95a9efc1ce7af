"""Export and import of snapshot files, and CSV listings of the catalog."""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable

from .catalog import to_utc_text
from .errors import SourceMissingError
from .snapshot import copy_file, unique_path
from .types import BackupRecord

CSV_COLUMNS = [
    "BackupId",
    "FileName",
    "BackupDate",
    "BackupType",
    "FileSizeBytes",
    "IsVerified",
    "IsCorrupted",
    "CreatedBy",
    "Description",
]


def export_snapshot(record: BackupRecord, destination: Path) -> Path:
    """Copy a snapshot out of the managed directory. Overwrites *destination*."""

    source = Path(record.file_path)
    if not source.is_file():
        raise SourceMissingError(f"snapshot file missing: {source}")
    destination = Path(destination)
    if destination.is_dir():
        destination = destination / record.file_name
    copy_file(source, destination)
    return destination


def import_snapshot(source: Path, directory: Path) -> Path:
    """Copy an external file into *directory* under a collision-free name."""

    source = Path(source)
    if not source.is_file():
        raise SourceMissingError(f"import source not found: {source}")
    directory.mkdir(parents=True, exist_ok=True)
    destination = unique_path(directory, source.name)
    copy_file(source, destination)
    return destination


def _format_csv_row(record: BackupRecord) -> Dict[str, str]:
    return {
        "BackupId": str(record.id or ""),
        "FileName": record.file_name,
        "BackupDate": to_utc_text(record.backup_date),
        "BackupType": record.backup_type.value,
        "FileSizeBytes": str(record.file_size_bytes),
        "IsVerified": "1" if record.is_verified else "0",
        "IsCorrupted": "1" if record.is_corrupted else "0",
        "CreatedBy": record.created_by,
        "Description": record.description,
    }


def write_catalog_csv(records: Iterable[BackupRecord], output_path: Path) -> int:
    count = 0
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="", encoding="utf-8-sig") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for record in records:
            writer.writerow(_format_csv_row(record))
            count += 1
    return count


__all__ = ["CSV_COLUMNS", "export_snapshot", "import_snapshot", "write_catalog_csv"]
