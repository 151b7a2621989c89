"""Snapshot actions exposed to the application layer.

Each action returns a tagged ``ActionResult`` and never raises: failures
come back as ``success=False`` with a human-readable ``error`` and the
taxonomy name in ``error_kind``.  On failure the store is unchanged,
except for ``StoreUnavailable`` raised while committing, which signals
an infrastructure fault that needs manual verification.

Callers are expected to be authorized already; no access checks happen
here.

Usage:
    from inventory_snapshot.actions import SnapshotActions

    actions = SnapshotActions(adapter, LocalAssetStore("public"))
    result = await actions.export_full()
    if result.success:
        archive_b64 = result.data
    result = await actions.import_full(archive_b64, wipe_first=True)
"""

import logging
from typing import Awaitable

from pydantic import BaseModel

from inventory_snapshot.adapters.base import StoreClient
from inventory_snapshot.config.models import SnapshotSettings
from inventory_snapshot.errors import ImportLocked, SnapshotError
from inventory_snapshot.snapshot.assets import LocalAssetStore
from inventory_snapshot.snapshot.bundler import encode_transport
from inventory_snapshot.snapshot.loader import SnapshotMode, load_snapshot
from inventory_snapshot.snapshot.models import INVENTORY_SCHEMA, RestoreSummary, SnapshotSchema
from inventory_snapshot.snapshot.writer import export_full, export_lightweight

logger = logging.getLogger(__name__)


class ActionResult(BaseModel):
    """Tagged success/failure result of a snapshot action."""

    success: bool
    data: str | None = None                 # export payload (JSON text or base64 archive)
    summary: RestoreSummary | None = None   # import counts
    error: str | None = None
    error_kind: str | None = None


def _failure(error: Exception) -> ActionResult:
    if isinstance(error, SnapshotError):
        return ActionResult(success=False, error=str(error), error_kind=error.kind)
    return ActionResult(success=False, error=f"Unexpected error: {error}", error_kind="StoreUnavailable")


class SnapshotActions:
    """Export/import actions bound to one store, asset store and settings.

    Args:
        adapter: Store adapter implementing ``StoreClient``.
        assets: Live asset store for full (archive) export/import.
        schema: Snapshot schema (default: the inventory schema).
        settings: ``[snapshot]`` settings; ``demo_mode`` locks imports.
        operator_id: ``id`` or ``username`` of the calling operator.
    """

    def __init__(
        self,
        adapter: StoreClient,
        assets: LocalAssetStore | None = None,
        schema: SnapshotSchema = INVENTORY_SCHEMA,
        settings: SnapshotSettings | None = None,
        operator_id: str | None = None,
    ) -> None:
        self.adapter = adapter
        self.assets = assets
        self.schema = schema
        self.settings = settings or SnapshotSettings()
        self.operator_id = operator_id

    async def _run(self, action: str, work: Awaitable[ActionResult]) -> ActionResult:
        try:
            return await work
        except SnapshotError as e:
            logger.warning("%s failed: %s: %s", action, e.kind, e)
            return _failure(e)
        except Exception as e:
            logger.exception("%s failed unexpectedly", action)
            return _failure(e)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export_lightweight(self) -> ActionResult:
        """Export all entities as JSON text."""

        async def work() -> ActionResult:
            return ActionResult(success=True, data=await export_lightweight(self.adapter, self.schema))

        return await self._run("Lightweight export", work())

    async def export_full(self) -> ActionResult:
        """Export all entities plus local images as a base64 zip archive."""

        async def work() -> ActionResult:
            if self.assets is None:
                raise SnapshotError("Full export needs an asset store")
            archive = await export_full(self.adapter, self.assets, self.schema)
            return ActionResult(success=True, data=encode_transport(archive))

        return await self._run("Full export", work())

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def _import(
        self,
        artifact: str | bytes,
        mode: SnapshotMode,
        wipe_first: bool,
        restore_users: bool | None,
        dry_run: bool,
    ) -> ActionResult:
        if self.settings.demo_mode:
            raise ImportLocked("Demo mode: importing data is disabled")
        summary = await load_snapshot(
            self.adapter,
            artifact,
            mode,
            wipe_first,
            schema=self.schema,
            assets=self.assets,
            staging_dir=self.settings.staging_dir,
            restore_users=self.settings.restore_users if restore_users is None else restore_users,
            operator_id=self.operator_id,
            dry_run=dry_run,
        )
        return ActionResult(success=True, summary=summary)

    async def import_lightweight(
        self,
        payload_text: str,
        wipe_first: bool = False,
        *,
        restore_users: bool | None = None,
        dry_run: bool = False,
    ) -> ActionResult:
        """Restore a JSON snapshot."""
        return await self._run(
            "Lightweight import",
            self._import(payload_text, "json", wipe_first, restore_users, dry_run),
        )

    async def import_full(
        self,
        archive_text: str,
        wipe_first: bool = False,
        *,
        restore_users: bool | None = None,
        dry_run: bool = False,
    ) -> ActionResult:
        """Restore a base64-encoded zip snapshot, images included."""
        return await self._run(
            "Full import",
            self._import(archive_text, "archive", wipe_first, restore_users, dry_run),
        )
