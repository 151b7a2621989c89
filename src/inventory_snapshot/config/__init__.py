"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from inventory_snapshot.config import load_config, StoreProfile, SnapshotConfig
"""

from inventory_snapshot.config.loader import load_config
from inventory_snapshot.config.models import (
    ConnectionResult,
    SnapshotConfig,
    SnapshotSettings,
    StoreProfile,
)

__all__ = [
    "load_config",
    "ConnectionResult",
    "SnapshotConfig",
    "SnapshotSettings",
    "StoreProfile",
]
