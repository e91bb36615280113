"""Pydantic models for sqlvault configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from sqlvault.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution


class BackupSettings(BaseModel):
    """``[backup]`` table: where artifacts live and how they are produced."""

    directory: str = "backups"
    max_backups: int = Field(default=30, ge=1)      # retention bound, newest kept
    compress: bool = True
    verify: bool = True
    chunk_size: int = Field(default=1000, ge=1)     # rows per INSERT page
    timeout: float = Field(default=300.0, gt=0)     # seconds, applied by the CLI


class RestoreSettings(BaseModel):
    """``[restore]`` table: defaults for restore attempts."""

    timeout: float = Field(default=600.0, gt=0)
    verify_before: bool = True
    verify_after: bool = True
    create_backup: bool = True                      # safety snapshot before mutating
    coverage_scan_lines: int = Field(default=100_000, ge=1)


class VaultConfig(BaseModel):
    """Complete configuration from sqlvault.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    restore: RestoreSettings = Field(default_factory=RestoreSettings)
