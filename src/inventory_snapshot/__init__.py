"""inventory-snapshot: Backup and restore for a home-inventory data store.

Exports the relational inventory graph (locations, brands, contacts,
templates, users, items and their history/lending records) as a JSON
payload or a zip archive bundling item images, and restores such a
snapshot atomically with foreign-key validation.

Usage:
    from inventory_snapshot import AsyncSQLAdapter, SnapshotActions, LocalAssetStore
    from inventory_snapshot import INVENTORY_SCHEMA, decode_payload, restore_snapshot
    from inventory_snapshot import get_adapter, load_config
"""

__version__ = "0.1.0"

# Actions
from inventory_snapshot.actions import ActionResult, SnapshotActions

# Adapters
from inventory_snapshot.adapters.base import StoreClient
from inventory_snapshot.adapters.memory import InMemoryAdapter
from inventory_snapshot.adapters.sql import AsyncSQLAdapter

# Config
from inventory_snapshot.config.loader import load_config
from inventory_snapshot.config.models import SnapshotConfig, SnapshotSettings, StoreProfile

# Errors
from inventory_snapshot.errors import (
    CorruptPayload,
    DanglingForeignKey,
    HierarchyCycle,
    ImportLocked,
    RestoreInProgress,
    SchemaMismatch,
    SnapshotError,
    StoreUnavailable,
    UnsafeArchiveEntry,
)

# Factory
from inventory_snapshot.factory import (
    ProfileNotFoundError,
    connect_profile,
    get_adapter,
    get_asset_store,
    resolve_url,
)

# Snapshot
from inventory_snapshot.snapshot import (
    INVENTORY_SCHEMA,
    LocalAssetStore,
    RestoreSummary,
    SnapshotSchema,
    decode_payload,
    encode_graph,
    export_full,
    export_lightweight,
    load_snapshot,
    restore_snapshot,
    validate_snapshot,
)

__all__ = [
    # Actions
    "SnapshotActions",
    "ActionResult",
    # Adapters
    "StoreClient",
    "AsyncSQLAdapter",
    "InMemoryAdapter",
    # Config
    "load_config",
    "SnapshotConfig",
    "SnapshotSettings",
    "StoreProfile",
    # Errors
    "SnapshotError",
    "CorruptPayload",
    "SchemaMismatch",
    "HierarchyCycle",
    "UnsafeArchiveEntry",
    "DanglingForeignKey",
    "RestoreInProgress",
    "StoreUnavailable",
    "ImportLocked",
    # Factory
    "get_adapter",
    "get_asset_store",
    "connect_profile",
    "ProfileNotFoundError",
    "resolve_url",
    # Snapshot
    "INVENTORY_SCHEMA",
    "SnapshotSchema",
    "RestoreSummary",
    "LocalAssetStore",
    "encode_graph",
    "decode_payload",
    "export_lightweight",
    "export_full",
    "restore_snapshot",
    "load_snapshot",
    "validate_snapshot",
]
