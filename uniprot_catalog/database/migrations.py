"""
Database migration ledger for catalog schema updates.

This module provides the ordered list of schema steps, version tracking in
``schema_migrations`` plus the one-row ``schema_version`` marker, and the
manager that applies and reverts steps. Every step runs in its own
transaction together with its ledger bookkeeping, so a step is either fully
applied and recorded or not applied at all.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence
from sqlalchemy import (
    Connection, MetaData, Table, delete, func, insert, inspect, or_, select, update
)

from .connection import DatabaseManager
from .context import SchemaContext
from .schema import (
    ENTRIES_TABLE, ENTRY_SPEC_V1, ENTRY_SPEC_V2, ENTRY_SPEC_V3, FAMILIES_TABLE,
    MEMBERSHIP_TABLE, SIMILARITY_FAMILIES_TABLE, V1_ENTRIES, V2_REQUIRED_MEASURES,
    V3_ENTRIES_WITHOUT_FAMILY, V4_MEMBERSHIP, EntryTableSpec, build_entries_table,
    build_families_table, build_ledger_tables, build_membership_table,
    build_similarity_families_table
)
from ..errors import (
    CatalogStoreError, InvalidValue, IrreversibleStep, MigrationConflict, NotFound,
    create_error_context
)
from ..logging_config import log_migration_step

logger = logging.getLogger(__name__)

_LEDGER_METADATA = MetaData()
MIGRATIONS, VERSION_MARKER = build_ledger_tables(_LEDGER_METADATA)
_MARKER_ID = 1


class Migration:
    """Represents a single schema step with a forward and an inverse action."""

    reversible = True

    def __init__(self, version: str, name: str, description: str):
        self.version = version
        self.name = name
        self.description = description

    def check_up(self, connection: Connection) -> None:
        """Raise MigrationConflict if the forward action cannot apply cleanly."""

    def up(self, connection: Connection) -> None:
        """Apply the migration (implement in subclasses)."""
        raise NotImplementedError("Migration.up() must be implemented")

    def check_down(self, connection: Connection) -> None:
        """Raise MigrationConflict if the inverse action cannot apply cleanly."""

    def down(self, connection: Connection) -> None:
        """Revert the migration; irreversible steps raise IrreversibleStep."""
        raise IrreversibleStep(
            f"Migration {self.version}_{self.name} has no inverse",
            context=create_error_context("apply_down", schema_version=self.version)
        )

    def translate_entry(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Translate one entry row from the previous shape into this step's shape."""
        return dict(row)

    def conflict(self, message: str, **details) -> MigrationConflict:
        return MigrationConflict(
            f"Migration {self.version}_{self.name}: {message}",
            context=create_error_context("migration", schema_version=self.version, **details)
        )

    def __repr__(self) -> str:
        return f"<Migration(version='{self.version}', name='{self.name}')>"


def _table_names(connection: Connection) -> set:
    return set(inspect(connection).get_table_names())


def _columns(connection: Connection, table: str) -> Dict[str, Dict[str, Any]]:
    return {col["name"]: col for col in inspect(connection).get_columns(table)}


def _require_tables(migration: Migration, connection: Connection,
                    present: Sequence[str] = (), absent: Sequence[str] = ()) -> None:
    existing = _table_names(connection)
    for table in present:
        if table not in existing:
            raise migration.conflict(f"table {table} does not exist", table=table)
    for table in absent:
        if table in existing:
            raise migration.conflict(f"table {table} already exists", table=table)


def _require_columns(migration: Migration, connection: Connection, table: str,
                     nullable: Optional[bool], names: Sequence[str]) -> None:
    columns = _columns(connection, table)
    for name in names:
        if name not in columns:
            raise migration.conflict(f"column {table}.{name} does not exist", column=name)
        if nullable is not None and bool(columns[name]["nullable"]) != nullable:
            state = "nullable" if columns[name]["nullable"] else "NOT NULL"
            raise migration.conflict(f"column {table}.{name} is already {state}", column=name)


def rebuild_entries_table(connection: Connection, target: EntryTableSpec,
                          translate: Callable[[Dict[str, Any]], Dict[str, Any]]) -> int:
    """
    Rebuild uniprot_entries under a new column layout.

    SQLite cannot change column nullability or width in place, so rows are
    copied through ``translate`` into a fresh table which then replaces the
    original. Runs inside the caller's transaction.

    Returns:
        Number of rows copied
    """
    metadata = MetaData()
    build_families_table(metadata)
    current = Table(ENTRIES_TABLE, metadata, autoload_with=connection)
    rebuilt = build_entries_table(metadata, target, name=f"{ENTRIES_TABLE}__rebuild")

    rows = [translate(dict(row._mapping)) for row in connection.execute(select(current))]
    rebuilt.create(connection)
    if rows:
        connection.execute(insert(rebuilt), rows)
    current.drop(connection)
    connection.exec_driver_sql(f'ALTER TABLE "{rebuilt.name}" RENAME TO "{ENTRIES_TABLE}"')
    return len(rows)


class CreateEntriesMigration(Migration):
    """Create uniprot_entries and the coarse uniprot_families table."""

    def __init__(self):
        super().__init__(V1_ENTRIES, "uniprot_entries",
                         "Create uniprot_entries with an optional family reference into uniprot_families")

    def _metadata(self) -> MetaData:
        metadata = MetaData()
        build_families_table(metadata)
        build_entries_table(metadata, ENTRY_SPEC_V1)
        return metadata

    def check_up(self, connection: Connection) -> None:
        _require_tables(self, connection, absent=(ENTRIES_TABLE, FAMILIES_TABLE))

    def up(self, connection: Connection) -> None:
        self._metadata().create_all(connection, checkfirst=False)

    def check_down(self, connection: Connection) -> None:
        _require_tables(self, connection, present=(ENTRIES_TABLE, FAMILIES_TABLE))

    def down(self, connection: Connection) -> None:
        self._metadata().drop_all(connection, checkfirst=False)


class RequireMeasuresMigration(Migration):
    """Make mass, seq_length and family mandatory on uniprot_entries."""

    TIGHTENED = ("mass", "seq_length", "family")

    def __init__(self):
        super().__init__(V2_REQUIRED_MEASURES, "uniprot_families",
                         "Require mass, seq_length and family on every entry")

    def check_up(self, connection: Connection) -> None:
        _require_tables(self, connection, present=(ENTRIES_TABLE, FAMILIES_TABLE))
        _require_columns(self, connection, ENTRIES_TABLE, True, self.TIGHTENED)

        entries = Table(ENTRIES_TABLE, MetaData(), autoload_with=connection)
        null_filter = or_(*(entries.c[name].is_(None) for name in self.TIGHTENED))
        violating = connection.execute(
            select(func.count()).select_from(entries).where(null_filter)
        ).scalar_one()
        if violating:
            sample = connection.execute(
                select(entries.c.accession_number).where(null_filter)
                .order_by(entries.c.accession_number).limit(5)
            ).scalars().all()
            raise self.conflict(
                f"{violating} existing entries have NULL mass, seq_length or family "
                f"(e.g. {', '.join(sample)})",
                violating_rows=violating
            )

    def up(self, connection: Connection) -> None:
        copied = rebuild_entries_table(connection, ENTRY_SPEC_V2, self.translate_entry)
        logger.debug(f"Tightened {copied} entries")

    def check_down(self, connection: Connection) -> None:
        _require_tables(self, connection, present=(ENTRIES_TABLE,))
        _require_columns(self, connection, ENTRIES_TABLE, False, self.TIGHTENED)

    def down(self, connection: Connection) -> None:
        rebuild_entries_table(connection, ENTRY_SPEC_V1, dict)


class DropEntryFamilyMigration(Migration):
    """Remove the family column from entries and drop uniprot_families.

    Family assignments are discarded, so this step has no inverse.
    """

    reversible = False

    def __init__(self):
        super().__init__(V3_ENTRIES_WITHOUT_FAMILY, "uniprot_entries",
                         "Widen entry identifiers and drop the direct family reference")

    def translate_entry(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {name: row.get(name) for name in ENTRY_SPEC_V3.columns}

    def check_up(self, connection: Connection) -> None:
        _require_tables(self, connection, present=(ENTRIES_TABLE, FAMILIES_TABLE))
        _require_columns(self, connection, ENTRIES_TABLE, None, ("family",))

        entries = Table(ENTRIES_TABLE, MetaData(), autoload_with=connection)
        too_long = func.length(entries.c.entry_name) > ENTRY_SPEC_V3.entry_name_length
        violating = connection.execute(
            select(func.count()).select_from(entries).where(too_long)
        ).scalar_one()
        if violating:
            sample = connection.execute(
                select(entries.c.accession_number).where(too_long)
                .order_by(entries.c.accession_number).limit(5)
            ).scalars().all()
            raise self.conflict(
                f"{violating} existing entries have an entry_name longer than "
                f"{ENTRY_SPEC_V3.entry_name_length} characters (e.g. {', '.join(sample)})",
                violating_rows=violating
            )

    def up(self, connection: Connection) -> None:
        copied = rebuild_entries_table(connection, ENTRY_SPEC_V3, self.translate_entry)
        metadata = MetaData()
        build_families_table(metadata).drop(connection)
        logger.info(f"Dropped family column from {copied} entries")


class MembershipMigration(Migration):
    """Create similarity families and the entry/family membership join table."""

    def __init__(self):
        super().__init__(V4_MEMBERSHIP, "belongs_to_uniprot_sequence_similarity_family",
                         "Relate entries and sequence similarity families many-to-many")

    def _tables(self):
        metadata = MetaData()
        build_entries_table(metadata, ENTRY_SPEC_V3)
        return build_similarity_families_table(metadata), build_membership_table(metadata)

    def check_up(self, connection: Connection) -> None:
        _require_tables(self, connection, present=(ENTRIES_TABLE,),
                        absent=(SIMILARITY_FAMILIES_TABLE, MEMBERSHIP_TABLE))

    def up(self, connection: Connection) -> None:
        families, memberships = self._tables()
        families.create(connection)
        memberships.create(connection)

    def check_down(self, connection: Connection) -> None:
        _require_tables(self, connection, present=(SIMILARITY_FAMILIES_TABLE, MEMBERSHIP_TABLE))

    def down(self, connection: Connection) -> None:
        families, memberships = self._tables()
        memberships.drop(connection)
        families.drop(connection)


def default_migrations() -> List[Migration]:
    """The catalog's schema history in application order."""
    return [
        CreateEntriesMigration(),
        RequireMeasuresMigration(),
        DropEntryFamilyMigration(),
        MembershipMigration(),
    ]


class MigrationManager:
    """Applies and reverts schema steps and tracks which are applied."""

    def __init__(self, db_manager: DatabaseManager, context: SchemaContext,
                 migrations: Optional[List[Migration]] = None):
        self.db_manager = db_manager
        self.context = context
        self.migrations: List[Migration] = sorted(
            migrations if migrations is not None else default_migrations(),
            key=lambda m: m.version
        )
        versions = [m.version for m in self.migrations]
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate migration versions in {versions}")

        self._ensure_migration_tables()
        with self.context.lock.exclusive("load_schema_version"):
            applied = self._read_verified_ledger()
            self.context.set_version(applied[-1] if applied else None)

    @property
    def versions(self) -> List[str]:
        return [m.version for m in self.migrations]

    def _ensure_migration_tables(self) -> None:
        """Ensure the ledger table and the version marker row exist."""
        with self.db_manager.get_ddl_connection() as connection:
            _LEDGER_METADATA.create_all(connection)
            marker = connection.execute(
                select(VERSION_MARKER.c.id).where(VERSION_MARKER.c.id == _MARKER_ID)
            ).first()
            if marker is None:
                connection.execute(insert(VERSION_MARKER).values(id=_MARKER_ID, version=None))
        logger.debug("Migration tracking tables ensured")

    def get_applied_migrations(self) -> List[str]:
        """Get list of applied migration versions in ascending order."""
        with self.db_manager.get_session() as session:
            return list(session.execute(
                select(MIGRATIONS.c.version).order_by(MIGRATIONS.c.version)
            ).scalars())

    def get_recorded_version(self) -> Optional[str]:
        """Read the persisted version marker."""
        with self.db_manager.get_session() as session:
            return session.execute(
                select(VERSION_MARKER.c.version).where(VERSION_MARKER.c.id == _MARKER_ID)
            ).scalar_one_or_none()

    def _read_verified_ledger(self) -> List[str]:
        """Read the applied set and check it is a prefix agreeing with the marker."""
        applied = self.get_applied_migrations()
        marker = self.get_recorded_version()
        context = create_error_context("verify_ledger", schema_version=marker, applied=applied)

        unknown = [v for v in applied if v not in self.versions]
        if unknown:
            raise MigrationConflict(f"Ledger contains unknown migrations: {', '.join(unknown)}", context=context)
        if applied != self.versions[:len(applied)]:
            raise MigrationConflict(
                f"Applied migrations {applied} are not a prefix of {self.versions}", context=context
            )
        expected = applied[-1] if applied else None
        if marker != expected:
            raise MigrationConflict(
                f"Version marker {marker} disagrees with ledger head {expected}", context=context
            )
        return applied

    def get_pending_migrations(self) -> List[Migration]:
        """Get list of migrations that haven't been applied."""
        applied = set(self.get_applied_migrations())
        return [m for m in self.migrations if m.version not in applied]

    def _apply_migration(self, migration: Migration) -> bool:
        """Apply a single migration; returns False if it was already recorded."""
        logger.info(f"Applying migration {migration.version}: {migration.description}")
        started = time.time()
        try:
            with self.db_manager.get_ddl_connection() as connection:
                recorded = connection.execute(
                    select(MIGRATIONS.c.version).where(MIGRATIONS.c.version == migration.version)
                ).first()
                if recorded is not None:
                    logger.info(f"Migration {migration.version} already applied, skipping")
                    return False

                migration.check_up(connection)
                migration.up(connection)
                connection.execute(
                    insert(MIGRATIONS).values(version=migration.version, name=migration.name)
                )
                connection.execute(
                    update(VERSION_MARKER).where(VERSION_MARKER.c.id == _MARKER_ID)
                    .values(version=migration.version, updated_at=func.now())
                )
        except CatalogStoreError as e:
            log_migration_step(logger, "up", migration.version, migration.name, error=e.message)
            raise

        log_migration_step(logger, "up", migration.version, migration.name,
                           duration=time.time() - started)
        return True

    def _rollback_migration(self, migration: Migration, previous: Optional[str]) -> None:
        """Revert a single migration and move the marker to ``previous``."""
        logger.info(f"Rolling back migration {migration.version}: {migration.description}")
        started = time.time()
        try:
            with self.db_manager.get_ddl_connection() as connection:
                migration.check_down(connection)
                migration.down(connection)
                connection.execute(delete(MIGRATIONS).where(MIGRATIONS.c.version == migration.version))
                connection.execute(
                    update(VERSION_MARKER).where(VERSION_MARKER.c.id == _MARKER_ID)
                    .values(version=previous, updated_at=func.now())
                )
        except CatalogStoreError as e:
            log_migration_step(logger, "down", migration.version, migration.name, error=e.message)
            raise

        log_migration_step(logger, "down", migration.version, migration.name,
                           duration=time.time() - started)

    def apply_up(self, target_version: Optional[str] = None) -> List[str]:
        """
        Apply pending migrations in ascending order, up to ``target_version``.

        Args:
            target_version: Highest version to apply; all pending if None

        Returns:
            Versions applied by this call

        Raises:
            NotFound: ``target_version`` is not a known migration
            MigrationConflict: A step's preconditions do not hold
        """
        if target_version is not None and target_version not in self.versions:
            raise NotFound(
                f"Unknown migration version: {target_version}",
                context=create_error_context("apply_up", entity_id=target_version)
            )

        applied_now: List[str] = []
        with self.context.lock.exclusive("apply_up"):
            applied = self._read_verified_ledger()
            pending = [
                m for m in self.migrations[len(applied):]
                if target_version is None or m.version <= target_version
            ]
            if not pending:
                logger.info("No pending migrations to apply")
                return applied_now

            logger.info(f"Applying {len(pending)} pending migrations")
            for migration in pending:
                self._apply_migration(migration)
                self.context.set_version(migration.version)
                applied_now.append(migration.version)

        logger.info(f"Schema now at version {self.context.shape.label}")
        return applied_now

    def apply_down(self, steps: int = 1) -> List[str]:
        """
        Revert the most recently applied ``steps`` migrations, newest first.

        Every step in the window is checked for an inverse before anything is
        reverted, so an irreversible step leaves the schema untouched.

        Returns:
            Versions reverted by this call

        Raises:
            InvalidValue: ``steps`` is smaller than 1
            IrreversibleStep: A step in the window declares no inverse
            MigrationConflict: A step's inverse preconditions do not hold
        """
        if steps < 1:
            raise InvalidValue(
                f"steps must be at least 1, got {steps}",
                context=create_error_context("apply_down")
            )

        reverted: List[str] = []
        with self.context.lock.exclusive("apply_down"):
            applied = self._read_verified_ledger()
            window = list(reversed(self.migrations[:len(applied)]))[:steps]
            if not window:
                logger.info("No migrations to rollback")
                return reverted

            blocked = [m for m in window if not m.reversible]
            if blocked:
                raise IrreversibleStep(
                    f"Cannot roll back past irreversible migration {blocked[0].version}_{blocked[0].name}",
                    context=create_error_context(
                        "apply_down", schema_version=self.context.version, requested_steps=steps
                    )
                )

            logger.info(f"Rolling back {len(window)} migrations")
            for migration in window:
                index = self.versions.index(migration.version)
                previous = self.versions[index - 1] if index > 0 else None
                self._rollback_migration(migration, previous)
                self.context.set_version(previous)
                reverted.append(migration.version)

        logger.info(f"Schema now at version {self.context.shape.label}")
        return reverted

    def get_migration_status(self) -> Dict[str, Any]:
        """Get current migration status."""
        applied = self.get_applied_migrations()
        pending = self.get_pending_migrations()

        return {
            "applied_migrations": applied,
            "pending_migrations": [m.version for m in pending],
            "current_version": applied[-1] if applied else None,
            "latest_version": self.migrations[-1].version if self.migrations else None,
            "is_up_to_date": len(pending) == 0
        }
