"""Transactional restore of a decoded snapshot graph.

``restore_snapshot`` applies a candidate graph to the live store so that
either the whole snapshot lands or none of it does:

1. Order the graph: hierarchies (``Location.parentId``) root-to-leaf,
   cycles rejected.
2. Inside one store transaction, resolve every foreign key against the
   snapshot plus the post-wipe store; a miss is ``DanglingForeignKey``.
3. Wipe (optional) in reverse dependency order.
4. Upsert every entity in forward dependency order, matched by its
   natural key (``id``, or unique ``name``/``username``).
5. After the transaction commits, move staged assets into the live
   asset store.

Any failure (cancellation included) rolls the transaction back and
discards the staged assets.  A failed asset move puts the replaced
files back but cannot undo the committed rows.  One restore runs at a
time per process; a second concurrent call fails fast with
``RestoreInProgress``.

Usage:
    from inventory_snapshot.snapshot.restore import restore_snapshot

    summary = await restore_snapshot(adapter, graph, wipe_first=True)
    print(summary.format_report())
"""

import asyncio
import logging
from typing import Any

from inventory_snapshot.adapters.base import StoreClient
from inventory_snapshot.errors import (
    DanglingForeignKey,
    HierarchyCycle,
    RestoreInProgress,
    SnapshotError,
    StoreUnavailable,
)
from inventory_snapshot.snapshot.assets import LocalAssetStore, StagedAssets
from inventory_snapshot.snapshot.models import (
    INVENTORY_SCHEMA,
    EntityCounts,
    EntityDef,
    RestoreSummary,
    SnapshotGraph,
    SnapshotSchema,
)

logger = logging.getLogger(__name__)

_restore_lock = asyncio.Lock()


class _DryRunRollback(Exception):
    """Raised inside the transaction to discard a dry run's writes."""


# ============================================================================
# Ordering
# ============================================================================


def order_hierarchy(entity: EntityDef, rows: list[dict]) -> list[dict]:
    """Order rows so every parent precedes its children.

    Parents that are not part of ``rows`` (already in the store, or
    missing) do not constrain the order.  Input order is kept among
    siblings.

    Raises:
        HierarchyCycle: If parent references form a cycle.
    """
    if not entity.self_refs:
        return list(rows)

    by_key = {row[entity.pk]: row for row in rows}
    ordered: list[dict] = []
    state: dict[Any, str] = {}          # key -> "visiting" | "done"

    for row in rows:
        chain: list[Any] = []
        key = row[entity.pk]
        # Walk up the parent chain until a placed or external ancestor
        while key in by_key and state.get(key) != "done":
            if state.get(key) == "visiting":
                cycle = " -> ".join(str(k) for k in [*chain, key])
                raise HierarchyCycle(f"{entity.name} hierarchy contains a cycle: {cycle}")
            state[key] = "visiting"
            chain.append(key)
            parents = [by_key[key].get(ref.field) for ref in entity.self_refs]
            key = next((p for p in parents if p in by_key and state.get(p) != "done"), None)
        for placed in reversed(chain):
            state[placed] = "done"
            ordered.append(by_key[placed])

    return ordered


def _select_credentials(
    entity: EntityDef,
    rows: list[dict],
    restore_users: bool,
    operator_id: str | None,
    counts: EntityCounts,
) -> list[dict]:
    if not restore_users:
        counts.skipped += len(rows)
        return []
    selected: list[dict] = []
    for row in rows:
        if operator_id is not None and operator_id in (row.get(entity.pk), row.get(entity.natural_key)):
            logger.info("Not restoring the operator's own %s row '%s'", entity.table, operator_id)
            counts.skipped += 1
            continue
        selected.append(row)
    return selected


# ============================================================================
# Store phases (all run on the transaction client)
# ============================================================================


async def _existing_keys(tx: StoreClient, entity: EntityDef) -> set[Any]:
    rows = await tx.select(entity.table, entity.pk)
    return {r[entity.pk] for r in rows}


async def _check_references(
    tx: StoreClient,
    schema: SnapshotSchema,
    plan: dict[str, list[dict]],
    wipe_first: bool,
) -> None:
    """Every FK must resolve to the snapshot or to the post-wipe store."""
    snapshot_keys = {
        entity.name: {row[entity.pk] for row in plan[entity.name]}
        for entity in schema.entities
    }
    store_keys: dict[str, set[Any]] = {}

    for entity in schema.write_order():
        for ref in entity.refs:
            parent = schema.get(ref.entity)
            for row in plan[entity.name]:
                value = row.get(ref.field)
                if value is None:
                    if ref.required:
                        raise DanglingForeignKey(entity.name, ref.field, "null")
                    continue
                if value in snapshot_keys[parent.name]:
                    continue
                if parent.name not in store_keys:
                    store_keys[parent.name] = (
                        set() if wipe_first and parent.wipe
                        else await _existing_keys(tx, parent)
                    )
                if value not in store_keys[parent.name]:
                    raise DanglingForeignKey(entity.name, ref.field, str(value))


async def _wipe(
    tx: StoreClient,
    schema: SnapshotSchema,
    summary: RestoreSummary,
) -> None:
    for entity in schema.wipe_order():
        deleted = await tx.delete(entity.table, {})
        summary.entities[entity.name].deleted = deleted or 0
        logger.info("Wiped %s rows from %s", deleted, entity.table)


async def _upsert_rows(
    tx: StoreClient,
    entity: EntityDef,
    rows: list[dict],
    counts: EntityCounts,
) -> None:
    if not rows:
        return

    columns = entity.pk if entity.natural_key == entity.pk else f"{entity.pk}, {entity.natural_key}"
    existing = await tx.select(entity.table, columns)
    natural_of = {r[entity.pk]: r[entity.natural_key] for r in existing}
    by_natural = {natural: pk for pk, natural in natural_of.items()}

    for row in rows:
        natural = row[entity.natural_key]
        match_pk = by_natural.get(natural)
        if match_pk is None and row[entity.pk] in natural_of:
            match_pk = row[entity.pk]

        if match_pk is None:
            await tx.insert(entity.table, dict(row))
            counts.inserted += 1
            natural_of[row[entity.pk]] = natural
            by_natural[natural] = row[entity.pk]
            continue

        data = {k: v for k, v in row.items() if k != entity.pk}
        await tx.update(entity.table, data=data, filters={entity.pk: match_pk})
        counts.updated += 1
        # A renamed row frees its old natural key
        previous = natural_of.get(match_pk)
        if previous != natural and by_natural.get(previous) == match_pk:
            del by_natural[previous]
        natural_of[match_pk] = natural
        by_natural[natural] = match_pk


# ============================================================================
# Public API
# ============================================================================


def plan_restore(
    graph: SnapshotGraph,
    schema: SnapshotSchema = INVENTORY_SCHEMA,
    restore_users: bool = False,
    operator_id: str | None = None,
    summary: RestoreSummary | None = None,
) -> dict[str, list[dict]]:
    """Compute the rows to write per entity, in write order.

    Pure function: no store access.  Hierarchies are ordered and the
    user policy is applied (skipped rows are counted in ``summary``).

    Raises:
        HierarchyCycle: If a hierarchy contains a cycle.
    """
    summary = summary or RestoreSummary()
    plan: dict[str, list[dict]] = {}
    for entity in schema.write_order():
        counts = summary.entities.setdefault(entity.name, EntityCounts())
        rows = order_hierarchy(entity, graph.get(entity.name, []))
        if entity.credentials:
            rows = _select_credentials(entity, rows, restore_users, operator_id, counts)
        plan[entity.name] = rows
    return plan


async def restore_snapshot(
    adapter: StoreClient,
    graph: SnapshotGraph,
    schema: SnapshotSchema = INVENTORY_SCHEMA,
    *,
    wipe_first: bool = False,
    staged: StagedAssets | None = None,
    assets: LocalAssetStore | None = None,
    restore_users: bool = False,
    operator_id: str | None = None,
    dry_run: bool = False,
) -> RestoreSummary:
    """Apply a decoded snapshot graph to the store atomically.

    Args:
        adapter: Store adapter implementing ``StoreClient``.
        graph: Candidate graph produced by ``decode_payload``.
        schema: Snapshot schema (default: the inventory schema).
        wipe_first: Delete all rows of every wipeable entity before writing.
        staged: Staged assets from an archive; always consumed (committed on
            success, discarded otherwise).
        assets: Live asset store that ``staged`` is committed into.
        restore_users: Restore ``users`` rows (never wiped either way).
        operator_id: ``id`` or ``username`` of the operator running the
            restore; that user's row is never overwritten.
        dry_run: Validate and count without keeping any write.

    Returns:
        ``RestoreSummary`` with per-entity counts.

    Raises:
        RestoreInProgress: If another restore is running in this process.
        HierarchyCycle: If the location tree contains a cycle.
        DanglingForeignKey: If a reference resolves nowhere.
        StoreUnavailable: If the store fails; the transaction is rolled back.
    """
    if _restore_lock.locked():
        if staged is not None:
            staged.discard()
        raise RestoreInProgress("Another restore is already running")

    async with _restore_lock:
        summary = RestoreSummary(dry_run=dry_run, wiped=wipe_first)
        try:
            plan = plan_restore(graph, schema, restore_users, operator_id, summary)

            async with adapter.transaction() as tx:
                await _check_references(tx, schema, plan, wipe_first)
                if wipe_first:
                    await _wipe(tx, schema, summary)
                for entity in schema.write_order():
                    await _upsert_rows(tx, entity, plan[entity.name], summary.entities[entity.name])
                if dry_run:
                    summary.assets = len(staged) if staged is not None else 0
                    raise _DryRunRollback()

            if staged is not None and assets is not None:
                try:
                    summary.assets = await asyncio.to_thread(staged.commit, assets)
                except OSError as e:
                    raise StoreUnavailable(
                        f"Rows were restored but moving staged assets failed: {e}"
                    ) from e

        except _DryRunRollback:
            logger.info("Dry run finished, %d rows would be written", summary.written)
        except SnapshotError as e:
            logger.warning("Restore failed: %s", e)
            raise
        except asyncio.CancelledError:
            logger.warning("Restore cancelled, transaction rolled back")
            raise
        except Exception as e:
            logger.exception("Restore failed, transaction rolled back")
            raise StoreUnavailable(f"Store write failed: {e}") from e
        finally:
            if staged is not None:
                staged.discard()

    logger.info("Restore finished: %d rows written", summary.written)
    return summary
