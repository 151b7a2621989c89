"""Asset bundler: zip archives holding a payload plus item images.

Archive layout::

    data.json                   structured payload
    uploads/items/a.webp        raw bytes of Item.image "/uploads/items/a.webp"
    ...

Only locally stored assets are packed; remote URLs and inline data URIs
stay in the payload as-is.  Unpacking validates every entry name before
writing anything, then extracts into a private staging directory.

All work here is on raw bytes.  The base64 text envelope used at the
action boundary lives in ``encode_transport``/``decode_transport``.

Usage:
    from inventory_snapshot.snapshot.bundler import pack_archive, unpack_archive

    archive = await pack_archive(payload_text, graph, INVENTORY_SCHEMA, assets)
    payload_text, staged = await unpack_archive(archive)
"""

import asyncio
import base64
import binascii
import io
import logging
import zipfile
import zlib
from pathlib import Path

from inventory_snapshot.errors import CorruptPayload, SchemaMismatch, UnsafeArchiveEntry
from inventory_snapshot.snapshot.assets import (
    LocalAssetStore,
    StagedAssets,
    entry_name,
    is_local_reference,
    safe_relative_path,
)
from inventory_snapshot.snapshot.models import SnapshotGraph, SnapshotSchema

logger = logging.getLogger(__name__)

PAYLOAD_ENTRY = "data.json"

# zipfile errors for damaged or unsupported archives
_DAMAGED_ARCHIVE = (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, NotImplementedError)


def collect_asset_references(graph: SnapshotGraph, schema: SnapshotSchema) -> list[str]:
    """Distinct local asset references in the graph, in first-seen order."""
    refs: dict[str, None] = {}
    for entity in schema.entities:
        if entity.image_field is None:
            continue
        for row in graph.get(entity.name, []):
            ref = row.get(entity.image_field)
            if is_local_reference(ref):
                refs.setdefault(ref.strip(), None)
    return list(refs)


def _pack(
    payload_text: str,
    graph: SnapshotGraph,
    schema: SnapshotSchema,
    assets: LocalAssetStore,
) -> bytes:
    buffer = io.BytesIO()
    packed = 0
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(PAYLOAD_ENTRY, payload_text.encode("utf-8"))
        for ref in collect_asset_references(graph, schema):
            name = entry_name(ref)
            if name == PAYLOAD_ENTRY:
                logger.warning("Skipping asset that collides with payload entry: %s", ref)
                continue
            try:
                if not assets.exists(ref):
                    logger.warning("Asset not found, not bundled: %s", ref)
                    continue
            except UnsafeArchiveEntry:
                logger.warning("Asset reference outside asset root, not bundled: %s", ref)
                continue
            zf.writestr(name, assets.read(ref))
            packed += 1
    logger.info("Packed archive with %d assets (%d bytes)", packed, buffer.tell())
    return buffer.getvalue()


def _unpack(archive: bytes, staging_parent: str | Path | None) -> tuple[str, StagedAssets]:
    try:
        zf = zipfile.ZipFile(io.BytesIO(archive), "r")
    except _DAMAGED_ARCHIVE as e:
        raise CorruptPayload(f"Invalid zip archive: {e}") from e

    with zf:
        members = [m for m in zf.infolist() if not m.is_dir()]
        # Reject the whole archive before a single byte is written
        for member in members:
            safe_relative_path(member.filename)

        names = {m.filename for m in members}
        if PAYLOAD_ENTRY not in names:
            raise SchemaMismatch(f"Archive has no '{PAYLOAD_ENTRY}' entry")

        staged = StagedAssets.create(staging_parent)
        try:
            payload_bytes = zf.read(PAYLOAD_ENTRY)
            for member in members:
                if member.filename == PAYLOAD_ENTRY:
                    continue
                staged.write(member.filename, zf.read(member))
        except _DAMAGED_ARCHIVE as e:
            staged.discard()
            raise CorruptPayload(f"Damaged archive entry: {e}") from e
        except BaseException:
            staged.discard()
            raise

    try:
        payload_text = payload_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        staged.discard()
        raise CorruptPayload(f"Payload entry is not UTF-8 text: {e}") from e
    return payload_text, staged


async def pack_archive(
    payload_text: str,
    graph: SnapshotGraph,
    schema: SnapshotSchema,
    assets: LocalAssetStore,
) -> bytes:
    """Build a zip archive holding the payload and all local item assets.

    Args:
        payload_text: Encoded structured payload.
        graph: The graph the payload was encoded from (source of references).
        schema: Snapshot schema naming each entity's ``image_field``.
        assets: Live asset store to read files from.

    Returns:
        Raw archive bytes.
    """
    return await asyncio.to_thread(_pack, payload_text, graph, schema, assets)


async def unpack_archive(
    archive: bytes,
    staging_parent: str | Path | None = None,
) -> tuple[str, StagedAssets]:
    """Split an archive into its payload text and staged assets.

    Args:
        archive: Raw archive bytes.
        staging_parent: Directory to create the staging area in
            (default: system temp dir).

    Returns:
        Tuple of (payload text, staged assets).  The caller owns the
        staging area and must ``commit()`` or ``discard()`` it.

    Raises:
        CorruptPayload: If the bytes are not a readable zip archive.
        UnsafeArchiveEntry: If any entry name would escape the staging directory.
        SchemaMismatch: If the archive has no payload entry.
    """
    return await asyncio.to_thread(_unpack, archive, staging_parent)


def encode_transport(archive: bytes) -> str:
    """Base64 text envelope for the text-only action boundary."""
    return base64.b64encode(archive).decode("ascii")


def decode_transport(text: str) -> bytes:
    """Decode a base64 envelope back to raw archive bytes.

    Accepts ``data:...;base64,`` prefixes produced by browser file readers.
    """
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    text = "".join(text.split())
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CorruptPayload(f"Archive transport is not valid base64: {e}") from e


def read_payload(archive: bytes) -> tuple[str, list[str]]:
    """Read the payload and asset entry names without extracting anything.

    Applies the same entry-name checks as ``unpack_archive``.

    Returns:
        Tuple of (payload text, asset entry names).
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(archive), "r")
    except _DAMAGED_ARCHIVE as e:
        raise CorruptPayload(f"Invalid zip archive: {e}") from e

    with zf:
        names = [m.filename for m in zf.infolist() if not m.is_dir()]
        for name in names:
            safe_relative_path(name)
        if PAYLOAD_ENTRY not in names:
            raise SchemaMismatch(f"Archive has no '{PAYLOAD_ENTRY}' entry")
        try:
            payload_text = zf.read(PAYLOAD_ENTRY).decode("utf-8-sig")
        except _DAMAGED_ARCHIVE + (UnicodeDecodeError,) as e:
            raise CorruptPayload(f"Unreadable payload entry: {e}") from e
    return payload_text, [n for n in names if n != PAYLOAD_ENTRY]
