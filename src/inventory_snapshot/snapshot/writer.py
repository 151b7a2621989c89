"""Snapshot writer: read the live graph and produce export artifacts.

Both variants are read-only.  The read is a snapshot-in-time made of
one query per entity, not a single isolated transaction: rows written
concurrently between two entity reads may or may not appear.

Usage:
    from inventory_snapshot.snapshot.writer import export_full, export_lightweight

    text = await export_lightweight(adapter)
    archive = await export_full(adapter, LocalAssetStore("public"))
"""

import logging

from inventory_snapshot.adapters.base import StoreClient
from inventory_snapshot.errors import StoreUnavailable
from inventory_snapshot.snapshot.assets import LocalAssetStore
from inventory_snapshot.snapshot.bundler import pack_archive
from inventory_snapshot.snapshot.codec import dumps_payload, encode_graph
from inventory_snapshot.snapshot.models import INVENTORY_SCHEMA, SnapshotGraph, SnapshotSchema

logger = logging.getLogger(__name__)


async def read_graph(
    adapter: StoreClient,
    schema: SnapshotSchema = INVENTORY_SCHEMA,
) -> SnapshotGraph:
    """Read every row of every entity, ordered by primary key.

    Raises:
        StoreUnavailable: If any read fails.
    """
    graph: SnapshotGraph = {}
    for entity in schema.entities:
        try:
            graph[entity.name] = await adapter.select(entity.table, "*", order_by=entity.pk)
        except Exception as e:
            raise StoreUnavailable(f"Failed to read {entity.table}: {e}") from e
    logger.info(
        "Read graph: %s",
        ", ".join(f"{name}={len(rows)}" for name, rows in graph.items()),
    )
    return graph


async def export_lightweight(
    adapter: StoreClient,
    schema: SnapshotSchema = INVENTORY_SCHEMA,
) -> str:
    """Export the whole dataset as JSON text (no assets)."""
    graph = await read_graph(adapter, schema)
    return dumps_payload(encode_graph(graph, schema))


async def export_full(
    adapter: StoreClient,
    assets: LocalAssetStore,
    schema: SnapshotSchema = INVENTORY_SCHEMA,
) -> bytes:
    """Export the dataset plus all locally stored item images as a zip archive."""
    graph = await read_graph(adapter, schema)
    payload_text = dumps_payload(encode_graph(graph, schema))
    return await pack_archive(payload_text, graph, schema, assets)
