"""Backup, restore and catalog models.

Request models (``BackupOptions``, ``RecoveryOptions``) are caller-supplied
and never persisted.  ``BackupRecord`` is the one catalog entry written per
successful backup.  Result models follow the ``success`` / ``error`` shape:
a failed operation carries an ``OperationError`` instead of raising.

Usage:
    from sqlvault.backup.models import BackupOptions, RecoveryOptions

    result = await engine.create_backup(BackupOptions(description="Nightly"))
    if result.success:
        print(result.record.backup_id, result.record.size_human)
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from sqlvault.errors import OperationError


def format_size(size: int) -> str:
    """Human-readable byte size (``1.5 MB``)."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


# ============================================================================
# Requests
# ============================================================================


class BackupOptions(BaseModel):
    """What to capture in one backup run."""

    model_config = ConfigDict(frozen=True)

    include_structure: bool = True
    include_data: bool = True
    compress: bool = True
    verify: bool = True
    description: str = "Manual backup"


class RecoveryOptions(BaseModel):
    """One restore attempt.

    ``tables=None`` restores every table in the artifact; a list restricts
    the replay to statements targeting those tables (case-sensitive).
    """

    tables: list[str] | None = None
    verify_before: bool = True
    verify_after: bool = True
    create_backup: bool = True      # safety snapshot before mutating
    dry_run: bool = False
    description: str | None = None  # overrides the safety snapshot description


class RetentionPolicy(BaseModel):
    """Keep at most ``max_backups`` records, newest first."""

    max_backups: int = Field(default=30, ge=1)


class Frequency(StrEnum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class ScheduleState(BaseModel):
    """Automatic backup schedule, persisted as ``schedule.json``."""

    frequency: Frequency = Frequency.DAILY
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None


# ============================================================================
# Catalog entries
# ============================================================================


class BackupRecord(BaseModel):
    """Catalog entry for one successful backup. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    backup_id: str
    file: str                                       # artifact file name
    path: str                                       # absolute artifact path
    size: int                                       # bytes on disk
    created_at: datetime                            # UTC
    duration: float                                 # seconds
    tables_count: int
    row_counts: dict[str, int] = Field(default_factory=dict)
    checksum: str                                   # hex SHA-256 of the artifact
    compressed: bool
    options: BackupOptions

    @property
    def description(self) -> str:
        return self.options.description

    @property
    def size_human(self) -> str:
        return format_size(self.size)


# ============================================================================
# Results
# ============================================================================


class VerificationReport(BaseModel):
    """Outcome of an integrity check on one artifact."""

    valid: bool
    checksum: str | None = None
    tables_found: int = 0
    reason: str | None = None
    checks: dict[str, bool] = Field(default_factory=dict)


class BackupResult(BaseModel):
    """Result of ``BackupEngine.create_backup``."""

    success: bool
    record: BackupRecord | None = None
    duration: float = 0.0
    chunks: int = 0                                 # INSERT statements written
    evicted: list[str] = Field(default_factory=list)
    error: OperationError | None = None

    @property
    def backup_id(self) -> str | None:
        return self.record.backup_id if self.record else None


class RestoreResult(BaseModel):
    """Result of ``RecoveryEngine.restore`` and its variants."""

    success: bool
    backup_id: str
    recovery_backup_id: str | None = None           # safety snapshot, if taken
    duration: float = 0.0
    dry_run: bool = False
    statements_executed: int = 0                    # would-run count for dry runs
    tables_restored: list[str] = Field(default_factory=list)
    error: OperationError | None = None


class CoverageReport(BaseModel):
    """Tables a backup can restore, from a bounded scan of its artifact."""

    success: bool
    backup_id: str
    tables: list[str] = Field(default_factory=list)
    backup: BackupRecord | None = None
    recovery_options: dict[str, bool] = Field(default_factory=dict)
    truncated: bool = False                         # scan hit the line bound
    error: OperationError | None = None


class OperationResult(BaseModel):
    """Result of simple catalog operations (delete)."""

    success: bool
    message: str = ""
    error: OperationError | None = None


class BackupStatus(BaseModel):
    """Snapshot of the backup directory for operators."""

    directory: str
    total_backups: int
    total_size: int
    latest: BackupRecord | None = None
    schedule: ScheduleState | None = None

    @property
    def total_size_human(self) -> str:
        return format_size(self.total_size)
