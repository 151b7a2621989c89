"""Snapshot error taxonomy.

Every failure raised by the snapshot subsystem derives from
``SnapshotError`` and carries a ``kind`` string that the action layer
reports back to callers unchanged.

Usage:
    from inventory_snapshot.errors import SnapshotError, CorruptPayload

    try:
        graph = decode_payload(text, INVENTORY_SCHEMA)
    except SnapshotError as e:
        print(e.kind, e)
"""


class SnapshotError(Exception):
    """Base class for all snapshot backup/restore failures."""

    kind = "SnapshotError"


class CorruptPayload(SnapshotError):
    """Raised when the input cannot be parsed at all."""

    kind = "CorruptPayload"


class SchemaMismatch(SnapshotError):
    """Raised when the input parses but does not have the expected shape."""

    kind = "SchemaMismatch"


class HierarchyCycle(SchemaMismatch):
    """Raised when parent references form a cycle."""


class UnsafeArchiveEntry(SnapshotError):
    """Raised for archive entries that would escape the staging directory."""

    kind = "UnsafeArchiveEntry"


class DanglingForeignKey(SnapshotError):
    """Raised when a record references a parent absent from snapshot and store."""

    kind = "DanglingForeignKey"

    def __init__(self, entity: str, field: str, value: str) -> None:
        self.entity = entity
        self.field = field
        self.value = value
        super().__init__(
            f"{entity}.{field} references missing record '{value}'"
        )


class RestoreInProgress(SnapshotError):
    """Raised when a restore is requested while another one is running."""

    kind = "RestoreInProgress"


class StoreUnavailable(SnapshotError):
    """Raised when the underlying store fails for infrastructure reasons."""

    kind = "StoreUnavailable"


class ImportLocked(SnapshotError):
    """Raised when imports are disabled (demo mode)."""

    kind = "ImportLocked"
