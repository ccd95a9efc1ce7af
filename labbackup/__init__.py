"""Backup, verification, restore and retention for the lab data store."""
from __future__ import annotations

from .api import BackupService
from .catalog import BackupCatalog
from .errors import BackupError, RestoreRollbackError
from .logs import BackupLogger
from .types import (
    BackupRecord,
    BackupSummary,
    BackupType,
    OperationResult,
    RetentionSummary,
    VerificationStatus,
)

__all__ = [
    "BackupCatalog",
    "BackupError",
    "BackupLogger",
    "BackupRecord",
    "BackupService",
    "BackupSummary",
    "BackupType",
    "OperationResult",
    "RestoreRollbackError",
    "RetentionSummary",
    "VerificationStatus",
]
