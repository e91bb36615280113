"""Adapter and engine factory.

Resolves a database profile from ``sqlvault.toml``, builds the matching
async adapter from the URL scheme and wires backup/recovery engines around
it.

Profile selection order:
1. Explicit ``profile_name`` argument (``--profile``)
2. ``{env_prefix}SQLVAULT_PROFILE`` environment variable
3. The only profile, when the config defines exactly one
"""

import os
from urllib.parse import quote

from sqlvault.adapters.base import DatabaseClient
from sqlvault.adapters.mysql import AsyncMySQLAdapter
from sqlvault.adapters.sqlite import AsyncSQLiteAdapter
from sqlvault.backup.engine import BackupEngine
from sqlvault.backup.recovery import RecoveryEngine
from sqlvault.config.loader import load_config
from sqlvault.config.models import DatabaseProfile, VaultConfig

PROFILE_ENV_VAR = "SQLVAULT_PROFILE"


class ProfileNotFoundError(Exception):
    """Raised when no database profile can be selected."""

    pass


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(
    config: VaultConfig,
    profile_name: str | None = None,
    env_prefix: str = "",
) -> str:
    """Pick the profile to use.

    Args:
        config: Loaded configuration.
        profile_name: Explicit choice (wins over everything else).
        env_prefix: Prefix for the ``SQLVAULT_PROFILE`` env var lookup
            (e.g. ``"SHOP_"`` reads ``SHOP_SQLVAULT_PROFILE``).

    Returns:
        Profile name present in ``config.profiles``.

    Raises:
        ProfileNotFoundError: If nothing selects a profile, or the selected
            name isn't defined.
    """
    name = profile_name or os.environ.get(f"{env_prefix}{PROFILE_ENV_VAR}")
    if not name and len(config.profiles) == 1:
        name = next(iter(config.profiles))

    available = ", ".join(config.profiles.keys()) or "(none)"
    if not name:
        raise ProfileNotFoundError(
            "No database profile selected.\n"
            f"Use --profile <name> or set {env_prefix}{PROFILE_ENV_VAR}.\n"
            f"Available profiles: {available}"
        )
    if name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in sqlvault.toml.\n"
            f"Available profiles: {available}"
        )
    return name


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Adapter / Engine Factory
# ============================================================================


def create_adapter(database_url: str) -> DatabaseClient:
    """Build the async adapter matching the URL scheme.

    Args:
        database_url: ``sqlite://...``, ``mysql://...`` or ``mariadb://...``
            (async driver variants accepted as well).

    Returns:
        DatabaseClient instance

    Raises:
        ValueError: If the scheme isn't supported.
    """
    scheme = database_url.split("://", 1)[0].split("+", 1)[0].lower()
    if scheme == "sqlite":
        return AsyncSQLiteAdapter(database_url)
    if scheme in ("mysql", "mariadb"):
        return AsyncMySQLAdapter(database_url)
    raise ValueError(
        f"Unsupported database URL scheme '{scheme}'. Supported: sqlite, mysql, mariadb"
    )


def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: VaultConfig | None = None,
) -> DatabaseClient:
    """Create an adapter for the selected profile.

    Example:
        >>> adapter = get_adapter("local")
        >>> tables = await adapter.list_tables()
    """
    config = config or load_config()
    name = get_active_profile_name(config, profile_name, env_prefix)
    return create_adapter(resolve_url(config.profiles[name]))


def build_engines(
    client: DatabaseClient,
    config: VaultConfig,
) -> tuple[BackupEngine, RecoveryEngine]:
    """Backup and recovery engines sharing one catalog and run lock."""
    backups = BackupEngine(client, config.backup)
    return backups, RecoveryEngine(client, backups, config.restore)
