"""TOML configuration loader for sqlvault."""

import tomllib
from pathlib import Path

from sqlvault.config.models import (
    BackupSettings,
    DatabaseProfile,
    RestoreSettings,
    VaultConfig,
)

CONFIG_FILENAME = "sqlvault.toml"


def load_config(config_path: Path | str | None = None) -> VaultConfig:
    """Load sqlvault configuration from a TOML file.

    Args:
        config_path: Path to the TOML file (default: ``sqlvault.toml`` in
            the current working directory).

    Returns:
        VaultConfig with all profiles and backup/restore settings.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If a setting fails validation.
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"sqlvault config not found: {config_path}\n"
            f"Create {CONFIG_FILENAME} with at least one [profiles.<name>] table."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {
        name: DatabaseProfile(**profile_data)
        for name, profile_data in data.get("profiles", {}).items()
    }

    backup = BackupSettings(**data.get("backup", {}))

    # Relative backup directories are anchored at the config file
    backup_dir = Path(backup.directory)
    if not backup_dir.is_absolute():
        backup = backup.model_copy(
            update={"directory": str(config_path.parent / backup_dir)}
        )

    return VaultConfig(
        profiles=profiles,
        backup=backup,
        restore=RestoreSettings(**data.get("restore", {})),
    )
