"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class BackupType(str, Enum):
    MANUAL = "Manual"
    AUTOMATIC = "Automatic"
    SCHEDULED = "Scheduled"
    IMPORTED = "Imported"

    @classmethod
    def parse(cls, value: "BackupType | str") -> "BackupType":
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if member.value.lower() == text.lower() or member.name.lower() == text.lower():
                return member
        raise ValueError(f"unknown backup type: {value!r}")


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VALID = "valid"
    CORRUPTED = "corrupted"


def format_size(size_bytes: int) -> str:
    if size_bytes >= 1024 ** 3:
        return f"{size_bytes / 1024 ** 3:.2f} GB"
    if size_bytes >= 1024 ** 2:
        return f"{size_bytes / 1024 ** 2:.2f} MB"
    if size_bytes >= 1024:
        return f"{size_bytes / 1024:.2f} KB"
    return f"{size_bytes} Bytes"


@dataclass(slots=True)
class VerificationOutcome:
    """Result of one integrity check. ``reason`` is set only when corrupted."""

    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "VerificationOutcome":
        return cls(valid=True)

    @classmethod
    def corrupted(cls, reason: str) -> "VerificationOutcome":
        return cls(valid=False, reason=reason or "verification failed")


@dataclass(slots=True)
class BackupRecord:
    """Catalog entry describing one snapshot file."""

    file_name: str
    file_path: Path
    file_size_bytes: int
    backup_date: datetime
    backup_type: BackupType
    checksum: str
    created_by: str = ""
    description: str = ""
    status: VerificationStatus = VerificationStatus.UNVERIFIED
    verified_date: Optional[datetime] = None
    verified_by: Optional[str] = None
    error_message: Optional[str] = None
    record_count: int = 0
    database_version: int = 1
    id: Optional[int] = None

    @property
    def is_verified(self) -> bool:
        return self.status is not VerificationStatus.UNVERIFIED

    @property
    def is_corrupted(self) -> bool:
        return self.status is VerificationStatus.CORRUPTED

    @property
    def file_size_formatted(self) -> str:
        return format_size(self.file_size_bytes)

    @property
    def status_display(self) -> str:
        if self.is_corrupted:
            return "Corrupted"
        if self.is_verified:
            return "Verified"
        return "Unverified"

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_path": str(self.file_path),
            "file_size_bytes": self.file_size_bytes,
            "backup_date": self.backup_date.isoformat(),
            "backup_type": self.backup_type.value,
            "created_by": self.created_by,
            "description": self.description,
            "checksum": self.checksum,
            "status": self.status.value,
            "verified_date": self.verified_date.isoformat() if self.verified_date else None,
            "verified_by": self.verified_by,
            "error_message": self.error_message,
            "record_count": self.record_count,
        }

    def apply_verification(self, outcome: VerificationOutcome, *, actor: str, when: datetime) -> None:
        # Corruption is sticky: a later clean check never clears it.
        self.verified_date = when
        self.verified_by = actor
        if outcome.valid and not self.is_corrupted:
            self.status = VerificationStatus.VALID
            return
        self.status = VerificationStatus.CORRUPTED
        if not outcome.valid:
            self.error_message = outcome.reason


@dataclass(slots=True)
class SnapshotResult:
    path: Path
    size_bytes: int


@dataclass(slots=True)
class OperationResult:
    """Outcome reported by every public service operation."""

    ok: bool
    message: str
    record: Optional[BackupRecord] = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass(slots=True)
class RetentionSummary:
    removed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    freed_bytes: int = 0

    @property
    def deleted_count(self) -> int:
        return len(self.removed)


@dataclass(slots=True)
class BackupSummary:
    count: int
    valid_count: int
    corrupted_count: int
    unverified_count: int
    total_size_bytes: int
    latest: Optional[datetime]
    oldest: Optional[datetime]

    @property
    def total_size_formatted(self) -> str:
        return format_size(self.total_size_bytes)


__all__ = [
    "BackupRecord",
    "BackupSummary",
    "BackupType",
    "OperationResult",
    "RetentionSummary",
    "SnapshotResult",
    "VerificationOutcome",
    "VerificationStatus",
    "format_size",
]
