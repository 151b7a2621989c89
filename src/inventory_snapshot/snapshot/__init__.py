"""Relational snapshot backup and restore.

Provides the entity graph model, JSON codec, zip asset bundler, export
writer and the transactional restore engine.

Usage:
    from inventory_snapshot.snapshot import INVENTORY_SCHEMA, decode_payload
    from inventory_snapshot.snapshot import export_lightweight, restore_snapshot
"""

from inventory_snapshot.snapshot.assets import LocalAssetStore, StagedAssets
from inventory_snapshot.snapshot.bundler import (
    decode_transport,
    encode_transport,
    pack_archive,
    unpack_archive,
)
from inventory_snapshot.snapshot.codec import decode_payload, dumps_payload, encode_graph
from inventory_snapshot.snapshot.loader import load_snapshot, validate_snapshot
from inventory_snapshot.snapshot.models import (
    INVENTORY_SCHEMA,
    EntityDef,
    FieldDef,
    ForeignKey,
    RestoreSummary,
    SnapshotSchema,
)
from inventory_snapshot.snapshot.restore import plan_restore, restore_snapshot
from inventory_snapshot.snapshot.writer import export_full, export_lightweight, read_graph

__all__ = [
    "INVENTORY_SCHEMA",
    "SnapshotSchema",
    "EntityDef",
    "FieldDef",
    "ForeignKey",
    "RestoreSummary",
    "encode_graph",
    "decode_payload",
    "dumps_payload",
    "LocalAssetStore",
    "StagedAssets",
    "pack_archive",
    "unpack_archive",
    "encode_transport",
    "decode_transport",
    "read_graph",
    "export_lightweight",
    "export_full",
    "plan_restore",
    "restore_snapshot",
    "load_snapshot",
    "validate_snapshot",
]
