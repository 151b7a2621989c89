"""TOML configuration loader for snapshot profiles."""

import tomllib
from pathlib import Path

from inventory_snapshot.config.models import SnapshotConfig, SnapshotSettings, StoreProfile


def load_config(config_path: Path | None = None) -> SnapshotConfig:
    """Load snapshot configuration from a TOML file.

    Args:
        config_path: Path to snapshot.toml (default: ``snapshot.toml`` in cwd).

    Returns:
        SnapshotConfig with all profiles and snapshot settings.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config format is invalid.

    Example:
        >>> config = load_config(Path("snapshot.toml"))
        >>> config.profiles["local"].url
        'sqlite:///inventory.db'
    """
    if config_path is None:
        config_path = Path.cwd() / "snapshot.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Snapshot config not found: {config_path}\n"
            f"Create snapshot.toml with at least one [profiles.<name>] table."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = StoreProfile(**profile_data)

    return SnapshotConfig(
        profiles=profiles,
        snapshot=SnapshotSettings(**data.get("snapshot", {})),
    )
