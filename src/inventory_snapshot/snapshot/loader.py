"""Snapshot loader: turn an import artifact into a restored store.

``load_snapshot`` accepts either a JSON payload (``mode="json"``) or a
zip archive (``mode="archive"``, raw bytes or base64 text).  Archives are
unpacked into staging first; the payload is decoded and validated in
full before ``restore_snapshot`` touches the store.

``validate_snapshot`` runs the same decode and ordering checks without
a store, for the CLI ``validate`` command.

Usage:
    from inventory_snapshot.snapshot.loader import load_snapshot, validate_snapshot

    summary = await load_snapshot(adapter, archive_bytes, "archive",
                                  wipe_first=True, assets=assets)
    report = validate_snapshot(Path("backup.json").read_bytes(), "json")
"""

import logging
from pathlib import Path
from typing import Any, Literal

from inventory_snapshot.adapters.base import StoreClient
from inventory_snapshot.errors import SnapshotError
from inventory_snapshot.snapshot.assets import LocalAssetStore, StagedAssets, entry_name
from inventory_snapshot.snapshot.bundler import (
    collect_asset_references,
    decode_transport,
    read_payload,
    unpack_archive,
)
from inventory_snapshot.snapshot.codec import count_records, decode_payload
from inventory_snapshot.snapshot.models import INVENTORY_SCHEMA, RestoreSummary, SnapshotSchema
from inventory_snapshot.snapshot.restore import plan_restore, restore_snapshot

logger = logging.getLogger(__name__)

SnapshotMode = Literal["json", "archive"]


def _archive_bytes(artifact: bytes | str) -> bytes:
    if isinstance(artifact, str):
        return decode_transport(artifact)
    return artifact


async def load_snapshot(
    adapter: StoreClient,
    artifact: bytes | str,
    mode: SnapshotMode,
    wipe_first: bool = False,
    *,
    schema: SnapshotSchema = INVENTORY_SCHEMA,
    assets: LocalAssetStore | None = None,
    staging_dir: str | Path | None = None,
    restore_users: bool = False,
    operator_id: str | None = None,
    dry_run: bool = False,
) -> RestoreSummary:
    """Decode an import artifact and restore it atomically.

    Args:
        adapter: Store adapter implementing ``StoreClient``.
        artifact: JSON text/bytes, or archive bytes/base64 text.
        mode: ``"json"`` or ``"archive"``.
        wipe_first: Delete existing rows before writing.
        schema: Snapshot schema (default: the inventory schema).
        assets: Live asset store receiving archive assets.
        staging_dir: Parent directory for the private staging area.
        restore_users: Restore user rows (see ``restore_snapshot``).
        operator_id: Operator whose own user row is never overwritten.
        dry_run: Validate and count without keeping any write.

    Returns:
        ``RestoreSummary`` with per-entity counts.

    Raises:
        CorruptPayload, SchemaMismatch, UnsafeArchiveEntry: Before any store
            access.
        DanglingForeignKey, RestoreInProgress, StoreUnavailable: From the
            restore engine; the store is left unchanged.
    """
    staged: StagedAssets | None = None
    if mode == "archive":
        payload, staged = await unpack_archive(_archive_bytes(artifact), staging_dir)
        if assets is None:
            logger.warning("No asset store configured, %d staged assets will be dropped", len(staged))
    elif mode == "json":
        payload = artifact
    else:
        raise ValueError(f"Unknown snapshot mode '{mode}' (expected 'json' or 'archive')")

    try:
        graph = decode_payload(payload, schema)
    except BaseException:
        if staged is not None:
            staged.discard()
        raise

    return await restore_snapshot(
        adapter,
        graph,
        schema,
        wipe_first=wipe_first,
        staged=staged,
        assets=assets,
        restore_users=restore_users,
        operator_id=operator_id,
        dry_run=dry_run,
    )


def validate_snapshot(
    artifact: bytes | str,
    mode: SnapshotMode,
    schema: SnapshotSchema = INVENTORY_SCHEMA,
) -> dict[str, Any]:
    """Validate an import artifact without touching any store.

    Errors are conditions that would abort a restore before any store
    mutation.  Warnings flag references that point outside the snapshot
    (valid only if the parent already exists in the target store) and
    item images missing from an archive.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]),
        ``warnings`` (list[str]) and ``counts`` (per-entity record counts).
    """
    errors: list[str] = []
    warnings: list[str] = []
    counts: dict[str, int] = {}

    try:
        asset_names: list[str] | None = None
        if mode == "archive":
            payload, asset_names = read_payload(_archive_bytes(artifact))
        else:
            payload = artifact
        graph = decode_payload(payload, schema)
        plan_restore(graph, schema, restore_users=True)
    except SnapshotError as e:
        errors.append(f"{e.kind}: {e}")
        return {"valid": False, "errors": errors, "warnings": warnings, "counts": counts}

    counts = count_records(graph)

    for entity in schema.entities:
        for ref in entity.refs:
            parent = schema.get(ref.entity)
            parent_keys = {r[parent.pk] for r in graph[parent.name]}
            for row in graph[entity.name]:
                value = row.get(ref.field)
                if value is not None and value not in parent_keys:
                    warnings.append(
                        f"{entity.name} '{row[entity.pk]}': {ref.field} '{value}' "
                        f"not in snapshot"
                    )

    if asset_names is not None:
        present = set(asset_names)
        for ref in collect_asset_references(graph, schema):
            if entry_name(ref) not in present:
                warnings.append(f"Image '{ref}' is not bundled in the archive")

    return {"valid": True, "errors": errors, "warnings": warnings, "counts": counts}
