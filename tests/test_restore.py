"""Tests for the transactional restore engine.

Runs ``restore_snapshot``/``load_snapshot`` against ``InMemoryAdapter``
and checks: round trip through a JSON export, idempotent re-import,
all-or-nothing behaviour when a write fails late, parent-before-child
ordering regardless of payload order, foreign-key resolution against
snapshot and store, hierarchy cycles, the user-account policy,
single-flight locking and dry runs.
"""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest

from inventory_snapshot.adapters.memory import InMemoryAdapter
from inventory_snapshot.errors import (
    DanglingForeignKey,
    HierarchyCycle,
    RestoreInProgress,
    SchemaMismatch,
    StoreUnavailable,
)
from inventory_snapshot.snapshot.assets import LocalAssetStore, StagedAssets
from inventory_snapshot.snapshot.codec import decode_payload
from inventory_snapshot.snapshot.loader import load_snapshot
from inventory_snapshot.snapshot.models import INVENTORY_SCHEMA, EntityCounts, RestoreSummary
from inventory_snapshot.snapshot.restore import order_hierarchy, plan_restore, restore_snapshot
from inventory_snapshot.snapshot.writer import export_lightweight

UNIQUE = {"Brand": ["name"], "Contact": ["name"], "User": ["username"]}


def _store(tables: dict | None = None) -> InMemoryAdapter:
    return InMemoryAdapter(tables, unique=UNIQUE)


def _graph(**entities) -> dict:
    """Decoded graph of a payload holding L1 (Garage) and I1 (Drill in L1)."""
    data = {
        "version": "1.1",
        "locations": [{"id": "L1", "name": "Garage"}],
        "items": [{"id": "I1", "name": "Drill", "locationId": "L1"}],
    }
    data.update(entities)
    return decode_payload(data, INVENTORY_SCHEMA)


def _ids(store: InMemoryAdapter, table: str) -> list[str]:
    return [row["id"] for row in store.tables.get(table, [])]


class _FailingAdapter(InMemoryAdapter):
    """Raises on insert into one table."""

    def __init__(self, fail_table: str, error: BaseException, tables: dict | None = None) -> None:
        super().__init__(tables, unique=UNIQUE)
        self.fail_table = fail_table
        self.error = error

    async def insert(self, table: str, data: dict) -> dict:
        if table == self.fail_table:
            raise self.error
        return await super().insert(table, data)


class _CommitFailingAdapter(InMemoryAdapter):
    """Every transaction rolls back and raises when it tries to commit."""

    @asynccontextmanager
    async def transaction(self):
        async with super().transaction() as tx:
            yield tx
            raise ConnectionError("server closed the connection during commit")


# ------------------------------------------------------------------
# Ordering
# ------------------------------------------------------------------


class TestOrderHierarchy:
    @pytest.fixture
    def locations(self):
        return INVENTORY_SCHEMA.get("locations")

    def test_parents_first(self, locations):
        rows = [
            {"id": "L3", "parentId": "L2"},
            {"id": "L2", "parentId": "L1"},
            {"id": "L1", "parentId": None},
        ]
        assert [r["id"] for r in order_hierarchy(locations, rows)] == ["L1", "L2", "L3"]

    def test_siblings_keep_input_order(self, locations):
        rows = [
            {"id": "B", "parentId": "R"},
            {"id": "A", "parentId": "R"},
            {"id": "R", "parentId": None},
        ]
        assert [r["id"] for r in order_hierarchy(locations, rows)] == ["R", "B", "A"]

    def test_external_parent_does_not_constrain(self, locations):
        rows = [{"id": "L2", "parentId": "EXISTING"}, {"id": "L1", "parentId": None}]
        assert [r["id"] for r in order_hierarchy(locations, rows)] == ["L2", "L1"]

    def test_cycle(self, locations):
        rows = [{"id": "L1", "parentId": "L2"}, {"id": "L2", "parentId": "L1"}]
        with pytest.raises(HierarchyCycle, match="cycle"):
            order_hierarchy(locations, rows)

    def test_self_loop(self, locations):
        with pytest.raises(HierarchyCycle):
            order_hierarchy(locations, [{"id": "L1", "parentId": "L1"}])

    def test_cycle_is_schema_mismatch(self):
        assert issubclass(HierarchyCycle, SchemaMismatch)
        assert HierarchyCycle("x").kind == "SchemaMismatch"

    def test_entity_without_hierarchy_untouched(self):
        rows = [{"id": "I2"}, {"id": "I1"}]
        assert order_hierarchy(INVENTORY_SCHEMA.get("items"), rows) == rows


class TestPlanRestore:
    def test_users_skipped_by_default(self):
        graph = _graph(users=[{"id": "U1", "username": "ann", "password": "hash"}])
        summary = RestoreSummary()
        plan = plan_restore(graph, INVENTORY_SCHEMA, summary=summary)
        assert plan["users"] == []
        assert summary.entities["users"].skipped == 1

    def test_plan_covers_every_entity(self):
        plan = plan_restore(_graph())
        assert list(plan) == [e.name for e in INVENTORY_SCHEMA.write_order()]


# ------------------------------------------------------------------
# Restore
# ------------------------------------------------------------------


class TestRoundTrip:
    async def test_export_then_import_into_empty_store(self):
        source = _store()
        await restore_snapshot(source, _graph())

        text = await export_lightweight(source)
        target = _store()
        summary = await load_snapshot(target, text, "json")

        assert _ids(target, "Location") == ["L1"]
        assert _ids(target, "Item") == ["I1"]
        item = target.tables["Item"][0]
        assert item["name"] == "Drill"
        assert item["locationId"] == "L1"
        assert summary.entities["locations"].inserted == 1
        assert summary.entities["items"].inserted == 1

    async def test_re_export_matches(self):
        source = _store()
        await restore_snapshot(source, _graph())
        first = json.loads(await export_lightweight(source))

        target = _store()
        await load_snapshot(target, json.dumps(first), "json")
        second = json.loads(await export_lightweight(target))

        for entity in INVENTORY_SCHEMA.entities:
            if entity.name == "users":
                continue
            assert second[entity.name] == first[entity.name]

    async def test_reimport_is_idempotent(self):
        store = _store()
        await restore_snapshot(store, _graph())
        summary = await restore_snapshot(store, _graph())

        assert _ids(store, "Location") == ["L1"]
        assert _ids(store, "Item") == ["I1"]
        assert summary.entities["items"] == EntityCounts(updated=1)

    async def test_merge_matches_by_unique_name(self):
        store = _store({"Brand": [{"id": "B-old", "name": "Bosch"}]})
        graph = _graph(brands=[{"id": "B-new", "name": "Bosch"}])

        summary = await restore_snapshot(store, graph)

        assert _ids(store, "Brand") == ["B-old"]
        assert summary.entities["brands"].updated == 1

    async def test_renamed_row_frees_its_old_name(self):
        store = _store({"Brand": [{"id": "B1", "name": "Acme"}]})
        graph = _graph(brands=[{"id": "B1", "name": "Acme2"}, {"id": "B2", "name": "Acme"}])

        summary = await restore_snapshot(store, graph)

        brands = {row["id"]: row["name"] for row in store.tables["Brand"]}
        assert brands == {"B1": "Acme2", "B2": "Acme"}
        assert summary.entities["brands"] == EntityCounts(inserted=1, updated=1)


class TestOrdering:
    async def test_child_location_listed_before_parent(self):
        graph = _graph(
            locations=[
                {"id": "L2", "name": "Shelf", "parentId": "L1"},
                {"id": "L1", "name": "Garage"},
            ]
        )
        store = _store()
        await restore_snapshot(store, graph)
        assert _ids(store, "Location") == ["L1", "L2"]

    async def test_entities_written_parents_first(self):
        written: list[str] = []

        class RecordingAdapter(InMemoryAdapter):
            async def insert(self, table, data):
                written.append(table)
                return await super().insert(table, data)

        graph = _graph(
            itemHistory=[{"id": "H1", "itemId": "I1", "action": "created"}],
            lendingRecords=[{"id": "R1", "itemId": "I1", "borrowerName": "Bo"}],
        )
        await restore_snapshot(RecordingAdapter(), graph)
        assert written == ["Location", "Item", "ItemHistory", "LendingRecord"]


class TestForeignKeys:
    async def test_dangling_location_leaves_store_empty(self):
        graph = _graph(
            locations=[],
            items=[{"id": "I1", "name": "Drill", "locationId": "L-missing"}],
        )
        store = _store()
        with pytest.raises(DanglingForeignKey) as exc_info:
            await restore_snapshot(store, graph)

        assert str(exc_info.value) == "items.locationId references missing record 'L-missing'"
        assert exc_info.value.entity == "items"
        assert exc_info.value.value == "L-missing"
        assert _ids(store, "Item") == []
        assert _ids(store, "Location") == []

    async def test_reference_resolves_against_store(self):
        store = _store({"Location": [{"id": "L9", "name": "Attic"}]})
        graph = _graph(locations=[], items=[{"id": "I1", "name": "Drill", "locationId": "L9"}])

        await restore_snapshot(store, graph)

        assert _ids(store, "Item") == ["I1"]

    async def test_wiped_parent_does_not_count(self):
        store = _store({"Location": [{"id": "L9", "name": "Attic"}]})
        graph = _graph(locations=[], items=[{"id": "I1", "name": "Drill", "locationId": "L9"}])

        with pytest.raises(DanglingForeignKey):
            await restore_snapshot(store, graph, wipe_first=True)

        assert _ids(store, "Location") == ["L9"]

    async def test_history_needs_item(self):
        graph = _graph(itemHistory=[{"id": "H1", "itemId": "I-gone", "action": "moved"}])
        with pytest.raises(DanglingForeignKey, match="itemHistory.itemId"):
            await restore_snapshot(_store(), graph)

    async def test_cycle_rejected_before_store_access(self):
        graph = _graph(
            locations=[
                {"id": "L1", "name": "A", "parentId": "L2"},
                {"id": "L2", "name": "B", "parentId": "L1"},
            ],
            items=[],
        )
        store = _store()
        with pytest.raises(HierarchyCycle):
            await restore_snapshot(store, graph)
        assert store.tables == {}


class TestAtomicity:
    async def test_late_failure_rolls_back_everything(self):
        existing = {"Location": [{"id": "L0", "name": "Basement"}]}
        store = _FailingAdapter("LendingRecord", RuntimeError("connection reset"), existing)
        graph = _graph(lendingRecords=[{"id": "R1", "itemId": "I1", "borrowerName": "Bo"}])

        with pytest.raises(StoreUnavailable, match="connection reset") as exc_info:
            await restore_snapshot(store, graph, wipe_first=True)

        assert exc_info.value.kind == "StoreUnavailable"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert store.tables == existing

    async def test_cancellation_rolls_back(self):
        store = _FailingAdapter("Item", asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await restore_snapshot(store, _graph())
        assert _ids(store, "Location") == []

    async def test_failure_discards_staged_assets(self, tmp_path):
        assets = LocalAssetStore(tmp_path / "public")
        staged = StagedAssets.create(tmp_path / "staging")
        staged.write("uploads/a.png", b"png")
        graph = _graph(items=[{"id": "I1", "name": "Drill", "locationId": "L-missing"}])

        with pytest.raises(DanglingForeignKey):
            await restore_snapshot(_store(), graph, staged=staged, assets=assets)

        assert not staged.root.exists()
        assert not assets.exists("/uploads/a.png")

    async def test_success_commits_staged_assets(self, tmp_path):
        assets = LocalAssetStore(tmp_path / "public")
        staged = StagedAssets.create(tmp_path / "staging")
        staged.write("uploads/a.png", b"png")

        summary = await restore_snapshot(_store(), _graph(), staged=staged, assets=assets)

        assert summary.assets == 1
        assert assets.read("/uploads/a.png") == b"png"

    async def test_commit_failure_leaves_live_assets_untouched(self, tmp_path):
        assets = LocalAssetStore(tmp_path / "public")
        assets.write("/uploads/a.png", b"original")
        staged = StagedAssets.create(tmp_path / "staging")
        staged.write("uploads/a.png", b"from-snapshot")
        store = _CommitFailingAdapter()

        with pytest.raises(StoreUnavailable, match="during commit"):
            await restore_snapshot(store, _graph(), staged=staged, assets=assets)

        assert store.tables == {}
        assert assets.read("/uploads/a.png") == b"original"
        assert not staged.root.exists()


class TestWipe:
    async def test_wipe_replaces_contents(self):
        store = _store(
            {
                "Location": [{"id": "L1", "name": "Garage"}],
                "Item": [
                    {"id": "I1", "name": "Drill", "locationId": "L1"},
                    {"id": "I9", "name": "Old saw", "locationId": "L1"},
                ],
            }
        )
        summary = await restore_snapshot(store, _graph(), wipe_first=True)

        assert _ids(store, "Item") == ["I1"]
        assert summary.wiped is True
        assert summary.entities["items"].deleted == 2
        assert summary.entities["items"].inserted == 1

    async def test_wipe_keeps_users(self):
        store = _store({"User": [{"id": "U1", "username": "admin", "password": "x"}]})
        await restore_snapshot(store, _graph(), wipe_first=True)
        assert _ids(store, "User") == ["U1"]


class TestUserPolicy:
    def _users(self) -> list[dict]:
        return [
            {"id": "U1", "username": "admin", "password": "snapshot-hash"},
            {"id": "U2", "username": "guest", "password": "guest-hash"},
        ]

    async def test_users_not_restored_by_default(self):
        store = _store()
        summary = await restore_snapshot(store, _graph(users=self._users()))
        assert _ids(store, "User") == []
        assert summary.entities["users"].skipped == 2

    async def test_users_restored_on_request(self):
        store = _store()
        await restore_snapshot(store, _graph(users=self._users()), restore_users=True)
        assert _ids(store, "User") == ["U1", "U2"]

    async def test_operator_row_never_overwritten(self):
        store = _store({"User": [{"id": "U1", "username": "admin", "password": "live-hash"}]})

        summary = await restore_snapshot(
            store,
            _graph(users=self._users()),
            restore_users=True,
            operator_id="admin",
        )

        admin = next(u for u in store.tables["User"] if u["username"] == "admin")
        assert admin["password"] == "live-hash"
        assert _ids(store, "User") == ["U1", "U2"]
        assert summary.entities["users"].skipped == 1


class TestConcurrency:
    async def test_second_restore_fails_fast(self, tmp_path):
        started = asyncio.Event()
        release = asyncio.Event()

        class SlowAdapter(InMemoryAdapter):
            async def select(self, table, columns="*", filters=None, order_by=None):
                started.set()
                await release.wait()
                return await super().select(table, columns, filters, order_by)

        first = asyncio.create_task(restore_snapshot(SlowAdapter(), _graph()))
        await started.wait()

        staged = StagedAssets.create(tmp_path)
        with pytest.raises(RestoreInProgress):
            await restore_snapshot(_store(), _graph(), staged=staged)
        assert not staged.root.exists()

        release.set()
        summary = await first
        assert summary.entities["items"].inserted == 1


class TestDryRun:
    async def test_counts_without_writing(self):
        store = _store({"Location": [{"id": "L1", "name": "Garage"}]})

        summary = await restore_snapshot(store, _graph(), dry_run=True)

        assert summary.dry_run is True
        assert summary.entities["locations"].updated == 1
        assert summary.entities["items"].inserted == 1
        assert _ids(store, "Item") == []

    async def test_dry_run_still_validates(self):
        graph = _graph(items=[{"id": "I1", "name": "Drill", "locationId": "L-missing"}])
        with pytest.raises(DanglingForeignKey):
            await restore_snapshot(_store(), graph, dry_run=True)

    async def test_dry_run_keeps_assets_staged_only(self, tmp_path):
        assets = LocalAssetStore(tmp_path / "public")
        staged = StagedAssets.create(tmp_path / "staging")
        staged.write("uploads/a.png", b"png")

        summary = await restore_snapshot(_store(), _graph(), staged=staged, assets=assets, dry_run=True)

        assert summary.assets == 1
        assert not assets.exists("/uploads/a.png")
        assert not staged.root.exists()
