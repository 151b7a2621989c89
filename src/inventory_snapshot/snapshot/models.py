"""Entity graph model for snapshot backup/restore.

Every entity that takes part in a snapshot is declared once as an
``EntityDef`` row: its payload key, table, fields, required fields and
foreign keys.  The codec and the restore engine are driven generically
off this table -- adding an entity type means adding one row.

``SnapshotSchema.entities`` is ordered by dependency (parents first).
Restore writes in that order and wipes in the exact reverse.

Usage:
    from inventory_snapshot.snapshot.models import INVENTORY_SCHEMA

    for entity in INVENTORY_SCHEMA.write_order():
        print(entity.name, entity.table, entity.required_fields)
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

FieldKind = Literal["text", "decimal", "datetime", "document"]

# payload key -> ordered list of flat records
SnapshotGraph = dict[str, list[dict[str, Any]]]


class FieldDef(BaseModel):
    """A single column of an entity."""

    name: str
    kind: FieldKind = "text"
    required: bool = False
    default: Any = None
    default_now: bool = False           # substitute the decode time when absent


class ForeignKey(BaseModel):
    """Reference from a field of this entity to another entity's key."""

    entity: str         # referenced payload key
    field: str          # FK column in this entity
    required: bool = False


class EntityDef(BaseModel):
    """Definition of an entity for snapshot operations."""

    name: str                                       # payload key
    table: str                                      # store table name
    pk: str = "id"                                  # primary key column
    natural_key: str = "id"                         # upsert match column
    fields: list[FieldDef]
    refs: list[ForeignKey] = Field(default_factory=list)
    wipe: bool = True                               # deleted by wipe_first
    image_field: str | None = None                  # asset reference column
    credentials: bool = False                       # restored only on explicit request

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def required_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.required]

    @property
    def self_refs(self) -> list[ForeignKey]:
        """Foreign keys pointing back at this same entity (hierarchies)."""
        return [r for r in self.refs if r.entity == self.name]

    def field(self, name: str) -> FieldDef:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name} has no field '{name}'")


class SnapshotSchema(BaseModel):
    """Declarative snapshot schema. Entities ordered by dependency (parents first)."""

    entities: list[EntityDef]
    version: str = "1.1"
    accepted_versions: list[str] = Field(default_factory=lambda: ["1.0", "1.1"])

    @model_validator(mode="after")
    def _check_order(self) -> "SnapshotSchema":
        seen: set[str] = set()
        for entity in self.entities:
            if entity.name in seen:
                raise ValueError(f"Duplicate entity '{entity.name}'")
            for ref in entity.refs:
                if ref.entity != entity.name and ref.entity not in seen:
                    raise ValueError(
                        f"{entity.name}.{ref.field} references '{ref.entity}', "
                        f"which is not declared before it"
                    )
            seen.add(entity.name)
        return self

    def get(self, name: str) -> EntityDef:
        """Find an EntityDef by payload key."""
        for entity in self.entities:
            if entity.name == name:
                return entity
        raise KeyError(f"Unknown entity '{name}'")

    def write_order(self) -> list[EntityDef]:
        return list(self.entities)

    def wipe_order(self) -> list[EntityDef]:
        return [e for e in reversed(self.entities) if e.wipe]


class EntityCounts(BaseModel):
    """Per-entity restore counters."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0


class RestoreSummary(BaseModel):
    """Result of a successful restore."""

    dry_run: bool = False
    wiped: bool = False
    entities: dict[str, EntityCounts] = Field(default_factory=dict)
    assets: int = 0

    @property
    def written(self) -> int:
        """Total rows inserted or updated across all entities."""
        return sum(c.inserted + c.updated for c in self.entities.values())

    def format_report(self) -> str:
        """Format the summary as a human-readable report."""
        header = "Restore preview (dry run)" if self.dry_run else "Restore complete"
        lines = [header]
        for name, counts in self.entities.items():
            lines.append(
                f"  {name}: {counts.inserted} inserted, {counts.updated} updated, "
                f"{counts.skipped} skipped"
                + (f", {counts.deleted} deleted" if self.wiped else "")
            )
        if self.assets:
            lines.append(f"  assets: {self.assets} committed")
        return "\n".join(lines)


def _timestamps() -> list[FieldDef]:
    return [
        FieldDef(name="createdAt", kind="datetime", default_now=True),
        FieldDef(name="updatedAt", kind="datetime", default_now=True),
    ]


INVENTORY_SCHEMA = SnapshotSchema(
    entities=[
        EntityDef(
            name="locations",
            table="Location",
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="name", required=True),
                FieldDef(name="type", default="Fixed"),
                FieldDef(name="icon"),
                FieldDef(name="parentId"),
                *_timestamps(),
            ],
            refs=[ForeignKey(entity="locations", field="parentId")],
        ),
        EntityDef(
            name="brands",
            table="Brand",
            natural_key="name",
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="name", required=True),
                FieldDef(name="createdAt", kind="datetime", default_now=True),
            ],
        ),
        EntityDef(
            name="contacts",
            table="Contact",
            natural_key="name",
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="name", required=True),
                FieldDef(name="phone"),
                FieldDef(name="email"),
                FieldDef(name="createdAt", kind="datetime", default_now=True),
            ],
        ),
        EntityDef(
            name="templates",
            table="Template",
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="name", required=True),
                FieldDef(name="category", default="General"),
                FieldDef(name="config", kind="document", required=True),
                FieldDef(name="createdAt", kind="datetime", default_now=True),
            ],
        ),
        EntityDef(
            name="users",
            table="User",
            natural_key="username",
            wipe=False,
            credentials=True,
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="username", required=True),
                FieldDef(name="password", required=True),
                FieldDef(name="fullName"),
                FieldDef(name="avatar"),
                FieldDef(name="theme", default="default"),
                FieldDef(name="colors", kind="document"),
            ],
        ),
        EntityDef(
            name="items",
            table="Item",
            image_field="image",
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="name", required=True),
                FieldDef(name="type", default="Other"),
                FieldDef(name="category", default="General"),
                FieldDef(name="specs", kind="document", default="{}"),
                FieldDef(name="status", default="Available"),
                FieldDef(name="brand"),
                FieldDef(name="model"),
                FieldDef(name="color"),
                FieldDef(name="serialNumber"),
                FieldDef(name="purchasePrice", kind="decimal"),
                FieldDef(name="purchaseDate", kind="datetime"),
                FieldDef(name="warrantyEnd", kind="datetime"),
                FieldDef(name="purchaseLocation"),
                FieldDef(name="purchaseUrl"),
                FieldDef(name="notes"),
                FieldDef(name="image"),
                FieldDef(name="locationId"),
                *_timestamps(),
            ],
            refs=[ForeignKey(entity="locations", field="locationId")],
        ),
        EntityDef(
            name="itemHistory",
            table="ItemHistory",
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="itemId", required=True),
                FieldDef(name="action", required=True),
                FieldDef(name="details"),
                FieldDef(name="timestamp", kind="datetime", default_now=True),
            ],
            refs=[ForeignKey(entity="items", field="itemId", required=True)],
        ),
        EntityDef(
            name="lendingRecords",
            table="LendingRecord",
            fields=[
                FieldDef(name="id", required=True),
                FieldDef(name="itemId", required=True),
                FieldDef(name="borrowerName", required=True),
                FieldDef(name="borrowDate", kind="datetime", default_now=True),
                FieldDef(name="dueDate", kind="datetime"),
                FieldDef(name="returnDate", kind="datetime"),
            ],
            refs=[ForeignKey(entity="items", field="itemId", required=True)],
        ),
    ]
)
