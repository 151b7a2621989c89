"""Store and asset factory driven by snapshot.toml profiles.

The active profile comes from the ``{env_prefix}SNAPSHOT_PROFILE``
environment variable, falling back to the ``.snapshot-profile`` lock
file written by a successful ``connect_profile()``.

Usage:
    from inventory_snapshot.factory import get_adapter, get_asset_store

    adapter = await get_adapter()
    assets = get_asset_store()
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from inventory_snapshot.adapters.sql import AsyncSQLAdapter
from inventory_snapshot.config.loader import load_config
from inventory_snapshot.config.models import ConnectionResult, SnapshotConfig, StoreProfile
from inventory_snapshot.snapshot.assets import LocalAssetStore

logger = logging.getLogger(__name__)

# Profile lock file, relative to the current working directory
_PROFILE_LOCK_FILE = Path(".snapshot-profile")


class ProfileNotFoundError(Exception):
    """No active profile, or a profile name missing from snapshot.toml."""


# ============================================================================
# Active profile
# ============================================================================


def read_profile_lock() -> str | None:
    """Profile remembered by the last successful ``inventory-snapshot connect``."""
    try:
        name = _PROFILE_LOCK_FILE.read_text().strip()
    except FileNotFoundError:
        return None
    return name or None


def write_profile_lock(profile_name: str) -> None:
    """Remember ``profile_name`` for later export/import runs in this directory."""
    _PROFILE_LOCK_FILE.write_text(profile_name)
    logger.info("Active snapshot profile is now '%s'", profile_name)


def get_active_profile_name(env_prefix: str = "") -> str:
    """Name of the profile export/import should run against.

    ``{env_prefix}SNAPSHOT_PROFILE`` wins over the lock file so CI jobs
    and one-off runs can target a store without reconnecting.

    Raises:
        ProfileNotFoundError: If neither source names a profile.
    """
    env_profile = os.environ.get(f"{env_prefix}SNAPSHOT_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No store profile configured.\n"
        f"Set {env_prefix}SNAPSHOT_PROFILE=<name> or run: inventory-snapshot connect <name>"
    )


def get_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: SnapshotConfig | None = None,
) -> tuple[str, StoreProfile]:
    """Resolve a profile name and its configuration.

    Raises:
        ProfileNotFoundError: If no profile is configured or the name is unknown.
        FileNotFoundError: If snapshot.toml is missing.
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    config = config or load_config()
    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in snapshot.toml. Available: {available}"
        )
    return profile_name, config.profiles[profile_name]


def resolve_url(profile: StoreProfile) -> str:
    """Resolve profile URL with password substitution."""
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Factories
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: SnapshotConfig | None = None,
) -> AsyncSQLAdapter:
    """Create an ``AsyncSQLAdapter`` for the active (or named) profile."""
    _, profile = get_profile(profile_name, env_prefix, config)
    return AsyncSQLAdapter(resolve_url(profile), jsonb_columns=profile.jsonb_columns)


def get_asset_store(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: SnapshotConfig | None = None,
) -> LocalAssetStore:
    """Create the ``LocalAssetStore`` of the active (or named) profile."""
    _, profile = get_profile(profile_name, env_prefix, config)
    return LocalAssetStore(profile.asset_root)


async def connect_profile(
    profile_name: str,
    env_prefix: str = "",
    config: SnapshotConfig | None = None,
) -> ConnectionResult:
    """Test a profile's connection and persist it as the active profile.

    Returns:
        ConnectionResult; the lock file is written only on success.
    """
    try:
        _, profile = get_profile(profile_name, env_prefix, config)
    except (ProfileNotFoundError, FileNotFoundError, ValueError) as e:
        return ConnectionResult(success=False, profile_name=profile_name, error=str(e))

    adapter = AsyncSQLAdapter(resolve_url(profile), jsonb_columns=profile.jsonb_columns)
    try:
        await adapter.test_connection()
    except Exception as e:
        logger.warning("Connection test failed for profile %s: %s", profile_name, e)
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to store: {e}",
        )
    finally:
        await adapter.close()

    write_profile_lock(profile_name)
    return ConnectionResult(success=True, profile_name=profile_name)
