"""Error hierarchy for backup operations."""
from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class BackupNotFoundError(BackupError):
    """Raised when a backup id has no catalog entry."""


class SourceMissingError(BackupError):
    """Raised when the file to be copied does not exist."""


class CopyFailureError(BackupError):
    """Raised when a file copy fails part way."""


class ChecksumError(BackupError):
    """Raised when a digest cannot be computed."""


class CatalogError(BackupError):
    """Raised when backup metadata cannot be read or written."""


class BackupLockTimeout(BackupError):
    """Raised when the live store lock is not acquired in time."""


class BackupVerificationError(BackupError):
    """Raised when verification of a snapshot fails."""


class SizeMismatchError(BackupVerificationError):
    pass


class DigestMismatchError(BackupVerificationError):
    pass


class StructuralCorruptionError(BackupVerificationError):
    pass


class BackupRestoreError(BackupError):
    """Raised when restoring a snapshot fails and the live file was rolled back."""


class RestoreRollbackError(BackupRestoreError):
    """Raised when the rollback itself fails; live data is in an unknown state."""

    def __init__(self, message: str, *, rollback_path: str | None = None) -> None:
        super().__init__(message)
        self.rollback_path = rollback_path


__all__ = [
    "BackupError",
    "BackupLockTimeout",
    "BackupNotFoundError",
    "BackupRestoreError",
    "BackupVerificationError",
    "CatalogError",
    "ChecksumError",
    "CopyFailureError",
    "DigestMismatchError",
    "RestoreRollbackError",
    "SizeMismatchError",
    "SourceMissingError",
    "StructuralCorruptionError",
]
