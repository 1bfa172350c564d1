"""
Family membership index.

Maintains the many-to-many relation between entries and sequence similarity
families. Before the join table exists, the relation is read from the
``family`` column of the entry row and can only be changed through
``EntryRepository.upsert``.
"""

import logging
from typing import Set
from sqlalchemy import Table, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .connection import DatabaseManager
from .context import SchemaContext
from .schema import MEMBERSHIP_COLUMN, MEMBERSHIP_TABLE_MODE, SchemaShape
from ..errors import DanglingReference, ShapeMismatch, create_error_context
from ..logging_config import log_database_operation
from ..models.entities import MembershipRecord, normalize_key, validate_record


class FamilyMembershipIndex:
    """Relation between entries and similarity families with referential integrity."""

    def __init__(self, db_manager: DatabaseManager, context: SchemaContext):
        self.db_manager = db_manager
        self.context = context
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _join_table(self, shape: SchemaShape, operation: str) -> Table:
        if shape.membership == MEMBERSHIP_TABLE_MODE:
            return shape.memberships
        if shape.membership == MEMBERSHIP_COLUMN:
            message = (
                f"Memberships are stored on the entry row at schema version {shape.label}; "
                "set the entry's family through the entry repository"
            )
        else:
            message = f"Memberships not available at schema version {shape.label}"
        raise ShapeMismatch(message, context=create_error_context(operation, schema_version=shape.version))

    def add_membership(self, entry: str, family: str) -> bool:
        """
        Relate an entry to a family; adding an existing pair is a no-op.

        Returns:
            True if a new pair was stored

        Raises:
            DanglingReference: The entry or the family does not exist
        """
        with self.context.reading("add_membership") as shape:
            table = self._join_table(shape, "add_membership")
            record = validate_record(MembershipRecord, {"entry": entry, "family": family}, shape.version)

            with self.db_manager.get_transaction() as session:
                missing = []
                if session.execute(
                    select(shape.entries.c.accession_number)
                    .where(shape.entries.c.accession_number == record["entry"])
                ).first() is None:
                    missing.append(f"entry {record['entry']}")
                if session.execute(
                    select(shape.families.c.name).where(shape.families.c.name == record["family"])
                ).first() is None:
                    missing.append(f"family '{record['family']}'")
                if missing:
                    raise DanglingReference(
                        f"Cannot relate {record['entry']} to '{record['family']}': "
                        f"{' and '.join(missing)} not found",
                        context=create_error_context(
                            "add_membership", entity_id=record["entry"], entity_type="membership",
                            schema_version=shape.version, family=record["family"]
                        )
                    )

                created = session.execute(
                    sqlite_insert(table).values(**record).on_conflict_do_nothing()
                ).rowcount

        if created:
            log_database_operation(self.logger, "INSERT", table.name, count=created,
                                   entity_id=record["entry"], family=record["family"])
        return created > 0

    def remove_membership(self, entry: str, family: str) -> bool:
        """Remove a pair; removing an absent pair is a no-op."""
        entry, family = normalize_key(entry), normalize_key(family)
        with self.context.reading("remove_membership") as shape:
            table = self._join_table(shape, "remove_membership")
            with self.db_manager.get_transaction() as session:
                removed = session.execute(
                    delete(table).where(table.c.entry == entry, table.c.family == family)
                ).rowcount

        if removed:
            log_database_operation(self.logger, "DELETE", table.name, count=removed,
                                   entity_id=entry, family=family)
        return removed > 0

    def families_of(self, entry: str) -> Set[str]:
        """Names of the families an entry belongs to."""
        entry = normalize_key(entry)
        with self.context.reading("families_of") as shape:
            if shape.membership == MEMBERSHIP_COLUMN:
                entries = shape.entries
                query = select(entries.c.family).where(
                    entries.c.accession_number == entry, entries.c.family.is_not(None)
                )
            else:
                table = self._join_table(shape, "families_of")
                query = select(table.c.family).where(table.c.entry == entry)
            with self.db_manager.get_session() as session:
                return set(session.execute(query).scalars())

    def entries_of(self, family: str) -> Set[str]:
        """Accession numbers of the entries belonging to a family."""
        family = normalize_key(family)
        with self.context.reading("entries_of") as shape:
            if shape.membership == MEMBERSHIP_COLUMN:
                entries = shape.entries
                query = select(entries.c.accession_number).where(entries.c.family == family)
            else:
                table = self._join_table(shape, "entries_of")
                query = select(table.c.entry).where(table.c.family == family)
            with self.db_manager.get_session() as session:
                return set(session.execute(query).scalars())
