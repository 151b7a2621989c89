"""Tests for the loader and the tagged-result action layer.

Covers full export/import through the base64 archive transport (image
bytes preserved), lightweight export/import, ``validate_snapshot``
reports, demo-mode locking and the mapping of every failure to a
``success=False`` result carrying the error kind.
"""

import base64
import io
import json
import zipfile
from unittest.mock import AsyncMock

import pytest

from inventory_snapshot.actions import ActionResult, SnapshotActions
from inventory_snapshot.adapters.memory import InMemoryAdapter
from inventory_snapshot.config.models import SnapshotSettings
from inventory_snapshot.errors import SchemaMismatch
from inventory_snapshot.snapshot.assets import LocalAssetStore
from inventory_snapshot.snapshot.bundler import PAYLOAD_ENTRY
from inventory_snapshot.snapshot.loader import load_snapshot, validate_snapshot

IMAGE_BYTES = bytes(range(256)) * 4


def _seeded_store() -> InMemoryAdapter:
    return InMemoryAdapter(
        {
            "Location": [{"id": "L1", "name": "Garage", "type": "Fixed"}],
            "Item": [
                {
                    "id": "I1",
                    "name": "Drill",
                    "locationId": "L1",
                    "image": "/uploads/items/drill.webp",
                },
                {
                    "id": "I2",
                    "name": "Lamp",
                    "locationId": "L1",
                    "image": "https://cdn.example.com/lamp.png",
                },
            ],
        }
    )


def _payload_text(**entities) -> str:
    data = {
        "version": "1.1",
        "locations": [{"id": "L1", "name": "Garage"}],
        "items": [{"id": "I1", "name": "Drill", "locationId": "L1"}],
    }
    data.update(entities)
    return json.dumps(data)


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


# ------------------------------------------------------------------
# Actions: export/import
# ------------------------------------------------------------------


class TestFullExportImport:
    async def test_round_trip_preserves_image_bytes(self, tmp_path):
        source_assets = LocalAssetStore(tmp_path / "source")
        source_assets.write("/uploads/items/drill.webp", IMAGE_BYTES)
        exported = await SnapshotActions(_seeded_store(), source_assets).export_full()
        assert exported.success is True

        target = InMemoryAdapter()
        target_assets = LocalAssetStore(tmp_path / "target")
        settings = SnapshotSettings(staging_dir=str(tmp_path / "staging"))
        result = await SnapshotActions(target, target_assets, settings=settings).import_full(
            exported.data, wipe_first=True
        )

        assert result.success is True, result.error
        assert result.summary.assets == 1
        assert target_assets.read("/uploads/items/drill.webp") == IMAGE_BYTES
        images = {row["id"]: row["image"] for row in target.tables["Item"]}
        assert images == {
            "I1": "/uploads/items/drill.webp",
            "I2": "https://cdn.example.com/lamp.png",
        }

    async def test_export_is_base64_zip(self, tmp_path):
        assets = LocalAssetStore(tmp_path)
        assets.write("/uploads/items/drill.webp", IMAGE_BYTES)
        result = await SnapshotActions(_seeded_store(), assets).export_full()

        archive = base64.b64decode(result.data)
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert set(zf.namelist()) == {PAYLOAD_ENTRY, "uploads/items/drill.webp"}
            payload = json.loads(zf.read(PAYLOAD_ENTRY))
        assert payload["version"] == "1.1"
        assert [i["id"] for i in payload["items"]] == ["I1", "I2"]

    async def test_full_export_needs_asset_store(self):
        result = await SnapshotActions(_seeded_store()).export_full()
        assert result.success is False
        assert "asset store" in result.error

    async def test_unsafe_archive_reported(self, tmp_path):
        archive = _zip({PAYLOAD_ENTRY: _payload_text().encode(), "../../etc/passwd": b"x"})
        store = InMemoryAdapter()
        actions = SnapshotActions(store, LocalAssetStore(tmp_path / "public"))

        result = await actions.import_full(base64.b64encode(archive).decode("ascii"))

        assert result.success is False
        assert result.error_kind == "UnsafeArchiveEntry"
        assert store.tables == {}
        assert not (tmp_path / "etc").exists()

    async def test_garbage_transport_reported(self):
        result = await SnapshotActions(InMemoryAdapter()).import_full("%%%not base64%%%")
        assert result.success is False
        assert result.error_kind == "CorruptPayload"

    async def test_damaged_compressed_payload_is_corrupt(self, tmp_path):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(PAYLOAD_ENTRY, _payload_text() * 20)
        archive = bytearray(buffer.getvalue())
        start = 30 + len(PAYLOAD_ENTRY) + 2
        archive[start:start + 16] = bytes(b ^ 0xA5 for b in archive[start:start + 16])
        actions = SnapshotActions(InMemoryAdapter(), LocalAssetStore(tmp_path / "public"))

        result = await actions.import_full(base64.b64encode(bytes(archive)).decode("ascii"))

        assert result.success is False
        assert result.error_kind == "CorruptPayload"


class TestLightweightExportImport:
    async def test_round_trip(self):
        exported = await SnapshotActions(_seeded_store()).export_lightweight()
        assert exported.success is True

        target = InMemoryAdapter()
        result = await SnapshotActions(target).import_lightweight(exported.data)

        assert result.success is True
        assert [r["id"] for r in target.tables["Item"]] == ["I1", "I2"]
        assert result.summary.entities["items"].inserted == 2

    @pytest.mark.parametrize(
        "payload, kind",
        [
            ("{not json", "CorruptPayload"),
            ('{"version": "7.0"}', "SchemaMismatch"),
            (
                json.dumps({"items": [{"id": "I1", "name": "Drill", "locationId": "L-missing"}]}),
                "DanglingForeignKey",
            ),
        ],
    )
    async def test_failures_are_tagged(self, payload, kind):
        store = InMemoryAdapter()
        result = await SnapshotActions(store).import_lightweight(payload)
        assert result == ActionResult(success=False, error=result.error, error_kind=kind)
        assert store.tables == {}

    async def test_store_failure_is_unavailable(self):
        adapter = AsyncMock()
        adapter.select = AsyncMock(side_effect=ConnectionError("server closed the connection"))
        result = await SnapshotActions(adapter).export_lightweight()
        assert result.success is False
        assert result.error_kind == "StoreUnavailable"
        assert "server closed the connection" in result.error

    async def test_dry_run(self):
        store = InMemoryAdapter()
        result = await SnapshotActions(store).import_lightweight(_payload_text(), dry_run=True)
        assert result.success is True
        assert result.summary.dry_run is True
        assert result.summary.entities["items"].inserted == 1
        assert store.tables == {}


class TestSettings:
    async def test_demo_mode_locks_import(self):
        store = InMemoryAdapter()
        actions = SnapshotActions(store, settings=SnapshotSettings(demo_mode=True))

        result = await actions.import_lightweight(_payload_text())

        assert result.success is False
        assert result.error_kind == "ImportLocked"
        assert store.tables == {}

    async def test_demo_mode_allows_export(self):
        actions = SnapshotActions(_seeded_store(), settings=SnapshotSettings(demo_mode=True))
        result = await actions.export_lightweight()
        assert result.success is True

    async def test_restore_users_from_settings(self):
        users = [{"id": "U1", "username": "ann", "password": "hash"}]
        store = InMemoryAdapter()
        actions = SnapshotActions(store, settings=SnapshotSettings(restore_users=True))

        await actions.import_lightweight(_payload_text(users=users))

        assert [u["username"] for u in store.tables["User"]] == ["ann"]

    async def test_explicit_flag_overrides_settings(self):
        users = [{"id": "U1", "username": "ann", "password": "hash"}]
        store = InMemoryAdapter()
        actions = SnapshotActions(store, settings=SnapshotSettings(restore_users=True))

        await actions.import_lightweight(_payload_text(users=users), restore_users=False)

        assert "User" not in store.tables


# ------------------------------------------------------------------
# Loader
# ------------------------------------------------------------------


class TestLoadSnapshot:
    async def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown snapshot mode"):
            await load_snapshot(InMemoryAdapter(), "{}", "yaml")

    async def test_archive_bytes_accepted(self, tmp_path):
        archive = _zip({PAYLOAD_ENTRY: _payload_text().encode(), "uploads/a.png": b"png"})
        assets = LocalAssetStore(tmp_path / "public")
        store = InMemoryAdapter()

        summary = await load_snapshot(store, archive, "archive", assets=assets, staging_dir=tmp_path / "stage")

        assert summary.assets == 1
        assert assets.read("/uploads/a.png") == b"png"

    async def test_bad_payload_in_archive_discards_staging(self, tmp_path):
        archive = _zip({PAYLOAD_ENTRY: b'{"version": "1.1", "items": 5}', "uploads/a.png": b"png"})
        staging = tmp_path / "stage"
        with pytest.raises(SchemaMismatch):
            await load_snapshot(InMemoryAdapter(), archive, "archive", staging_dir=staging)
        assert not any(staging.iterdir())


class TestValidateSnapshot:
    def test_valid_json(self):
        report = validate_snapshot(_payload_text(), "json")
        assert report["valid"] is True
        assert report["errors"] == []
        assert report["counts"]["items"] == 1

    def test_external_reference_warns(self):
        payload = _payload_text(locations=[], items=[{"id": "I1", "name": "Drill", "locationId": "L9"}])
        report = validate_snapshot(payload, "json")
        assert report["valid"] is True
        assert any("locationId 'L9' not in snapshot" in w for w in report["warnings"])

    def test_cycle_is_error(self):
        payload = _payload_text(
            locations=[
                {"id": "L1", "name": "A", "parentId": "L2"},
                {"id": "L2", "name": "B", "parentId": "L1"},
            ],
            items=[],
        )
        report = validate_snapshot(payload, "json")
        assert report["valid"] is False
        assert report["errors"][0].startswith("SchemaMismatch:")

    def test_archive_missing_image_warns(self):
        payload = _payload_text(items=[{"id": "I1", "name": "Drill", "image": "/uploads/a.png"}])
        report = validate_snapshot(_zip({PAYLOAD_ENTRY: payload.encode()}), "archive")
        assert report["valid"] is True
        assert report["warnings"] == ["Image '/uploads/a.png' is not bundled in the archive"]

    def test_corrupt_archive(self):
        report = validate_snapshot(b"nope", "archive")
        assert report["valid"] is False
        assert report["errors"][0].startswith("CorruptPayload:")
