"""
Versioned schema shapes for the UniProt Catalog Store.

The catalog tables change shape across migrations, so instead of a single
declarative model this module describes each version as a ``SchemaShape``:
the SQLAlchemy Core tables that exist at that version plus the pydantic
record models that writes must satisfy.

Version history:
- 2024-11-12-204040: uniprot_entries with an optional family reference
  into uniprot_families, optional mass and sequence length
- 2024-11-14-140435: mass, seq_length and family become mandatory
- 2024-11-15-161712: entries lose the family column; uniprot_families dropped
- 2024-11-15-161840: sequence similarity families and the membership join table
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Type
from sqlalchemy import (
    Column, DateTime, ForeignKey, Index, Integer, MetaData, String, Table
)
from sqlalchemy.sql import func

from ..errors import ShapeMismatch, create_error_context
from ..models.entities import (
    CatalogRecord, EntryRecordV1, EntryRecordV2, EntryRecordV3,
    FamilyRecord, SimilarityFamilyRecord
)

ENTRIES_TABLE = "uniprot_entries"
FAMILIES_TABLE = "uniprot_families"
SIMILARITY_FAMILIES_TABLE = "uniprot_sequence_similarity_families"
MEMBERSHIP_TABLE = "belongs_to_uniprot_sequence_similarity_family"
MIGRATIONS_TABLE = "schema_migrations"
VERSION_TABLE = "schema_version"

V1_ENTRIES = "2024-11-12-204040"
V2_REQUIRED_MEASURES = "2024-11-14-140435"
V3_ENTRIES_WITHOUT_FAMILY = "2024-11-15-161712"
V4_MEMBERSHIP = "2024-11-15-161840"

MEMBERSHIP_NONE = "none"
MEMBERSHIP_COLUMN = "column"
MEMBERSHIP_TABLE_MODE = "table"


@dataclass(frozen=True)
class EntryTableSpec:
    """Column layout of uniprot_entries at one version."""
    accession_length: int
    entry_name_length: int
    measures_nullable: bool
    has_family: bool = False
    family_nullable: bool = True

    @property
    def columns(self) -> Tuple[str, ...]:
        names = ("accession_number", "entry_name", "mass", "seq_length")
        return names + ("family",) if self.has_family else names


def build_entries_table(metadata: MetaData, spec: EntryTableSpec, name: str = ENTRIES_TABLE) -> Table:
    """Build the uniprot_entries table for a layout, optionally under another name."""
    columns = [
        Column("accession_number", String(spec.accession_length), primary_key=True),
        Column("entry_name", String(spec.entry_name_length), nullable=False),
        Column("mass", Integer, nullable=spec.measures_nullable),
        Column("seq_length", Integer, nullable=spec.measures_nullable),
    ]
    if spec.has_family:
        columns.append(
            Column("family", String, ForeignKey(f"{FAMILIES_TABLE}.name"), nullable=spec.family_nullable)
        )
    return Table(name, metadata, *columns)


def build_families_table(metadata: MetaData) -> Table:
    return Table(FAMILIES_TABLE, metadata, Column("name", String, primary_key=True))


def build_similarity_families_table(metadata: MetaData) -> Table:
    return Table(SIMILARITY_FAMILIES_TABLE, metadata, Column("name", String(300), primary_key=True))


def build_membership_table(metadata: MetaData) -> Table:
    table = Table(
        MEMBERSHIP_TABLE,
        metadata,
        Column(
            "entry",
            String(50),
            ForeignKey(f"{ENTRIES_TABLE}.accession_number", ondelete="CASCADE"),
            primary_key=True
        ),
        Column(
            "family",
            String(300),
            ForeignKey(f"{SIMILARITY_FAMILIES_TABLE}.name", ondelete="CASCADE"),
            primary_key=True
        ),
    )
    Index("idx_membership_family", table.c.family)
    return table


def build_ledger_tables(metadata: MetaData) -> Tuple[Table, Table]:
    """Ledger of applied steps and the one-row version marker."""
    migrations = Table(
        MIGRATIONS_TABLE,
        metadata,
        Column("version", String(50), primary_key=True),
        Column("name", String(255), nullable=False),
        Column("applied_at", DateTime, server_default=func.now()),
    )
    marker = Table(
        VERSION_TABLE,
        metadata,
        Column("id", Integer, primary_key=True),
        Column("version", String(50), nullable=True),
        Column("updated_at", DateTime, server_default=func.now()),
    )
    return migrations, marker


@dataclass(frozen=True)
class SchemaShape:
    """Tables and record models active at one schema version."""
    version: Optional[str]
    entry_spec: Optional[EntryTableSpec] = None
    entry_model: Optional[Type[CatalogRecord]] = None
    family_table: Optional[str] = None
    family_model: Optional[Type[CatalogRecord]] = None
    membership: str = MEMBERSHIP_NONE
    metadata: MetaData = field(default_factory=MetaData, compare=False, repr=False)

    def __post_init__(self):
        if self.family_table == FAMILIES_TABLE:
            build_families_table(self.metadata)
        elif self.family_table == SIMILARITY_FAMILIES_TABLE:
            build_similarity_families_table(self.metadata)
        if self.entry_spec is not None:
            build_entries_table(self.metadata, self.entry_spec)
        if self.membership == MEMBERSHIP_TABLE_MODE:
            build_membership_table(self.metadata)

    @property
    def label(self) -> str:
        return self.version or "unversioned"

    @property
    def entries(self) -> Optional[Table]:
        return self.metadata.tables.get(ENTRIES_TABLE)

    @property
    def families(self) -> Optional[Table]:
        return self.metadata.tables.get(self.family_table) if self.family_table else None

    @property
    def memberships(self) -> Optional[Table]:
        return self.metadata.tables.get(MEMBERSHIP_TABLE)

    @property
    def table_names(self) -> Tuple[str, ...]:
        return tuple(sorted(self.metadata.tables))


ENTRY_SPEC_V1 = EntryTableSpec(accession_length=20, entry_name_length=100,
                               measures_nullable=True, has_family=True, family_nullable=True)
ENTRY_SPEC_V2 = EntryTableSpec(accession_length=20, entry_name_length=100,
                               measures_nullable=False, has_family=True, family_nullable=False)
ENTRY_SPEC_V3 = EntryTableSpec(accession_length=50, entry_name_length=50, measures_nullable=True)

UNVERSIONED = SchemaShape(version=None)

SHAPES: Dict[Optional[str], SchemaShape] = {
    None: UNVERSIONED,
    V1_ENTRIES: SchemaShape(
        version=V1_ENTRIES,
        entry_spec=ENTRY_SPEC_V1,
        entry_model=EntryRecordV1,
        family_table=FAMILIES_TABLE,
        family_model=FamilyRecord,
        membership=MEMBERSHIP_COLUMN,
    ),
    V2_REQUIRED_MEASURES: SchemaShape(
        version=V2_REQUIRED_MEASURES,
        entry_spec=ENTRY_SPEC_V2,
        entry_model=EntryRecordV2,
        family_table=FAMILIES_TABLE,
        family_model=FamilyRecord,
        membership=MEMBERSHIP_COLUMN,
    ),
    V3_ENTRIES_WITHOUT_FAMILY: SchemaShape(
        version=V3_ENTRIES_WITHOUT_FAMILY,
        entry_spec=ENTRY_SPEC_V3,
        entry_model=EntryRecordV3,
    ),
    V4_MEMBERSHIP: SchemaShape(
        version=V4_MEMBERSHIP,
        entry_spec=ENTRY_SPEC_V3,
        entry_model=EntryRecordV3,
        family_table=SIMILARITY_FAMILIES_TABLE,
        family_model=SimilarityFamilyRecord,
        membership=MEMBERSHIP_TABLE_MODE,
    ),
}


def shape_for(version: Optional[str]) -> SchemaShape:
    """Return the shape of a version; KeyError for unknown versions."""
    return SHAPES[version]


def require_table(table: Optional[Table], shape: SchemaShape, what: str, operation: str) -> Table:
    """Return ``table`` or raise ShapeMismatch when the active shape lacks it."""
    if table is None:
        raise ShapeMismatch(
            f"{what} not available at schema version {shape.label}",
            context=create_error_context(operation, schema_version=shape.version)
        )
    return table
