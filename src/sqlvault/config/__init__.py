"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from sqlvault.config import load_config, VaultConfig, DatabaseProfile
"""

from sqlvault.config.loader import load_config
from sqlvault.config.models import (
    BackupSettings,
    DatabaseProfile,
    RestoreSettings,
    VaultConfig,
)

__all__ = [
    "load_config",
    "VaultConfig",
    "DatabaseProfile",
    "BackupSettings",
    "RestoreSettings",
]
