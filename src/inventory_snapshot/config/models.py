"""Pydantic models for snapshot configuration."""

from pydantic import BaseModel, Field


class StoreProfile(BaseModel):
    """Store connection profile from snapshot.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    asset_root: str = "public"      # Root directory of locally stored images
    jsonb_columns: list[str] = Field(default_factory=list)


class SnapshotSettings(BaseModel):
    """The ``[snapshot]`` table of snapshot.toml."""

    demo_mode: bool = False         # Refuse every import
    restore_users: bool = False     # Restore user rows by default
    staging_dir: str | None = None  # Parent of per-restore staging dirs (default: temp dir)


class SnapshotConfig(BaseModel):
    """Complete configuration from snapshot.toml."""

    profiles: dict[str, StoreProfile]
    snapshot: SnapshotSettings = Field(default_factory=SnapshotSettings)


class ConnectionResult(BaseModel):
    """Result of connect_profile()."""

    success: bool
    profile_name: str | None = None
    error: str | None = None
