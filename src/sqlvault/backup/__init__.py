"""Backup and recovery engines, catalog, integrity checks and scheduling.

Usage:
    from sqlvault.backup import BackupEngine, RecoveryEngine, BackupOptions, RecoveryOptions
"""

from sqlvault.backup.catalog import Catalog
from sqlvault.backup.engine import BackupEngine, new_backup_id
from sqlvault.backup.integrity import check_header, compute_checksum, verify_artifact
from sqlvault.backup.models import (
    BackupOptions,
    BackupRecord,
    BackupResult,
    BackupStatus,
    CoverageReport,
    Frequency,
    OperationResult,
    RecoveryOptions,
    RestoreResult,
    RetentionPolicy,
    ScheduleState,
    VerificationReport,
)
from sqlvault.backup.recovery import RecoveryEngine
from sqlvault.backup.scheduler import BackupScheduler, calculate_next_run

__all__ = [
    # Engines
    "BackupEngine",
    "RecoveryEngine",
    "BackupScheduler",
    "Catalog",
    # Integrity
    "verify_artifact",
    "compute_checksum",
    "check_header",
    # Models
    "BackupOptions",
    "BackupRecord",
    "BackupResult",
    "BackupStatus",
    "CoverageReport",
    "Frequency",
    "OperationResult",
    "RecoveryOptions",
    "RestoreResult",
    "RetentionPolicy",
    "ScheduleState",
    "VerificationReport",
    # Helpers
    "new_backup_id",
    "calculate_next_run",
]
