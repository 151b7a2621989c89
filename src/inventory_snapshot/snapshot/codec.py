"""Snapshot codec: entity graph <-> structured JSON payload.

The payload is a flat multi-table dump: one top-level key per entity,
each value an ordered list of flat records.  Related entities appear
only as foreign-key scalars.  Dates travel as ISO-8601 text and prices
as decimal text so the document is portable across processes.

``decode_payload`` performs structural validation only.  Cross-entity
foreign keys are resolved by the restore engine, not here.

Usage:
    from inventory_snapshot.snapshot.codec import (
        decode_payload,
        dumps_payload,
        encode_graph,
    )
    from inventory_snapshot.snapshot.models import INVENTORY_SCHEMA

    text = dumps_payload(encode_graph(graph, INVENTORY_SCHEMA))
    candidate = decode_payload(text, INVENTORY_SCHEMA)
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from inventory_snapshot.errors import CorruptPayload, SchemaMismatch
from inventory_snapshot.snapshot.models import (
    EntityDef,
    FieldDef,
    SnapshotGraph,
    SnapshotSchema,
)

logger = logging.getLogger(__name__)

# Top-level keys that are not entity tables
ENVELOPE_KEYS = ("version", "exportedAt")


# ============================================================================
# Encode
# ============================================================================


def _encode_value(field: FieldDef, value: Any) -> Any:
    """Convert a live store value to its portable JSON form."""
    if value is None:
        return None
    if field.kind == "datetime":
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)
    if field.kind == "decimal":
        return str(Decimal(str(value)))
    if field.kind == "document" and not isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return value


def encode_graph(
    graph: SnapshotGraph,
    schema: SnapshotSchema,
    exported_at: datetime | None = None,
) -> dict[str, Any]:
    """Encode a live entity graph into a structured payload.

    Only declared fields are emitted, in declaration order.  Entities
    missing from ``graph`` are written as empty lists.

    Args:
        graph: Mapping of payload key to list of row dicts.
        schema: Snapshot schema describing the entities.
        exported_at: Timestamp recorded in the envelope (default: now, UTC).

    Returns:
        JSON-compatible payload dict.
    """
    exported_at = exported_at or datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "version": schema.version,
        "exportedAt": exported_at.isoformat(),
    }
    for entity in schema.entities:
        payload[entity.name] = [
            {f.name: _encode_value(f, row.get(f.name)) for f in entity.fields}
            for row in graph.get(entity.name, [])
        ]
    return payload


def dumps_payload(payload: dict[str, Any]) -> str:
    """Serialize a payload to UTF-8 friendly JSON text."""
    return json.dumps(payload, indent=2, ensure_ascii=False)


# ============================================================================
# Decode
# ============================================================================


def _decode_value(entity: EntityDef, field: FieldDef, value: Any, index: int) -> Any:
    """Convert a portable JSON value back to its typed form."""
    where = f"{entity.name}[{index}].{field.name}"

    if field.kind == "datetime":
        if not isinstance(value, str):
            raise SchemaMismatch(f"{where}: expected ISO-8601 text, got {type(value).__name__}")
        try:
            return datetime.fromisoformat(value)
        except ValueError as e:
            raise SchemaMismatch(f"{where}: invalid timestamp '{value}'") from e

    if field.kind == "decimal":
        if isinstance(value, bool) or not isinstance(value, str | int | float):
            raise SchemaMismatch(f"{where}: expected decimal text, got {type(value).__name__}")
        try:
            return Decimal(str(value))
        except InvalidOperation as e:
            raise SchemaMismatch(f"{where}: invalid decimal '{value}'") from e

    if field.kind == "document":
        # Opaque nested document; embedded objects are flattened back to text
        if isinstance(value, dict | list):
            return json.dumps(value, ensure_ascii=False)
        if not isinstance(value, str):
            raise SchemaMismatch(f"{where}: expected document text, got {type(value).__name__}")
        return value

    if not isinstance(value, str):
        raise SchemaMismatch(f"{where}: expected text, got {type(value).__name__}")
    return value


def _decode_record(
    entity: EntityDef,
    record: Any,
    index: int,
    now: datetime,
) -> dict[str, Any]:
    if not isinstance(record, dict):
        raise SchemaMismatch(
            f"{entity.name}[{index}]: expected object, got {type(record).__name__}"
        )

    row: dict[str, Any] = {}
    for field in entity.fields:
        value = record.get(field.name)
        if value is None:
            if field.required:
                raise SchemaMismatch(
                    f"{entity.name}[{index}] missing required field '{field.name}'"
                )
            if field.default_now:
                value = now
            else:
                value = field.default
            row[field.name] = value
            continue
        row[field.name] = _decode_value(entity, field, value, index)

    if row[entity.pk] == "":
        raise SchemaMismatch(f"{entity.name}[{index}] has empty '{entity.pk}'")
    return row


def _load(source: str | bytes | dict) -> Any:
    if isinstance(source, dict):
        return source
    if isinstance(source, bytes):
        try:
            source = source.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise CorruptPayload(f"Payload is not UTF-8 text: {e}") from e
    try:
        return json.loads(source)
    except json.JSONDecodeError as e:
        raise CorruptPayload(f"Invalid JSON: {e}") from e


def decode_payload(source: str | bytes | dict, schema: SnapshotSchema) -> SnapshotGraph:
    """Decode and structurally validate a snapshot payload.

    Missing entity keys are treated as empty lists so older snapshots
    that predate an entity type still load.  Unknown top-level keys and
    undeclared record fields are ignored.  Absent optional fields take
    their declared default.

    Args:
        source: JSON text, UTF-8 bytes, or an already-parsed dict.
        schema: Snapshot schema describing the entities.

    Returns:
        Candidate graph: payload key -> list of typed row dicts.

    Raises:
        CorruptPayload: If the input is not parseable JSON.
        SchemaMismatch: If the document does not have the expected shape.
    """
    data = _load(source)
    if not isinstance(data, dict):
        raise SchemaMismatch(
            f"Snapshot root must be an object, got {type(data).__name__}"
        )

    version = data.get("version")
    if version is None:
        logger.warning("Snapshot has no version field, treating as legacy payload")
    elif str(version) not in schema.accepted_versions:
        raise SchemaMismatch(
            f"Unsupported snapshot version '{version}' "
            f"(expected one of {', '.join(schema.accepted_versions)})"
        )

    now = datetime.now(timezone.utc)
    graph: SnapshotGraph = {}

    for entity in schema.entities:
        records = data.get(entity.name)
        if records is None:
            graph[entity.name] = []
            continue
        if not isinstance(records, list):
            raise SchemaMismatch(
                f"'{entity.name}' must be a list, got {type(records).__name__}"
            )

        rows: list[dict[str, Any]] = []
        keys: set[Any] = set()
        for index, record in enumerate(records):
            row = _decode_record(entity, record, index, now)
            if row[entity.pk] in keys:
                raise SchemaMismatch(
                    f"{entity.name} contains duplicate {entity.pk} '{row[entity.pk]}'"
                )
            keys.add(row[entity.pk])
            rows.append(row)
        graph[entity.name] = rows

    return graph


def count_records(graph: SnapshotGraph) -> dict[str, int]:
    """Per-entity record counts of a graph."""
    return {name: len(rows) for name, rows in graph.items()}
