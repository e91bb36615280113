"""sqlvault: verifiable backup and transactional restore for SQL databases.

Dumps a MySQL/MariaDB or SQLite database into a checksummed, optionally
compressed SQL artifact, keeps a catalog of backups with a retention bound,
and replays artifacts (fully or per table) inside one transaction.

Usage:
    from sqlvault import AsyncSQLiteAdapter, BackupEngine, RecoveryEngine
    from sqlvault import BackupOptions, RecoveryOptions
    from sqlvault import load_config, get_adapter, build_engines
"""

__version__ = "0.1.0"

# Adapters
from sqlvault.adapters.base import DatabaseClient
from sqlvault.adapters.mysql import AsyncMySQLAdapter
from sqlvault.adapters.sqlite import AsyncSQLiteAdapter

# Engines and models
from sqlvault.backup.engine import BackupEngine
from sqlvault.backup.integrity import verify_artifact
from sqlvault.backup.models import (
    BackupOptions,
    BackupRecord,
    BackupResult,
    CoverageReport,
    RecoveryOptions,
    RestoreResult,
    VerificationReport,
)
from sqlvault.backup.recovery import RecoveryEngine
from sqlvault.backup.scheduler import BackupScheduler

# Config
from sqlvault.config.loader import load_config
from sqlvault.config.models import DatabaseProfile, VaultConfig

# Errors
from sqlvault.errors import ErrorKind, OperationError, SqlVaultError

# Factory
from sqlvault.factory import (
    ProfileNotFoundError,
    build_engines,
    create_adapter,
    get_adapter,
    resolve_url,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncMySQLAdapter",
    "AsyncSQLiteAdapter",
    # Engines
    "BackupEngine",
    "RecoveryEngine",
    "BackupScheduler",
    "verify_artifact",
    # Models
    "BackupOptions",
    "BackupRecord",
    "BackupResult",
    "CoverageReport",
    "RecoveryOptions",
    "RestoreResult",
    "VerificationReport",
    # Config
    "load_config",
    "DatabaseProfile",
    "VaultConfig",
    # Errors
    "ErrorKind",
    "OperationError",
    "SqlVaultError",
    # Factory
    "get_adapter",
    "create_adapter",
    "build_engines",
    "resolve_url",
    "ProfileNotFoundError",
]
