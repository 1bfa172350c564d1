"""
Entry and family repositories over the active schema shape.

Both repositories read the shape from the schema context while holding the
store lock shared, validate records against that shape's pydantic model and
write through SQLite upserts keyed by primary key.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union
from pydantic import BaseModel
from sqlalchemy import Table, delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from .connection import DatabaseManager
from .context import SchemaContext
from .schema import MEMBERSHIP_COLUMN, MEMBERSHIP_TABLE_MODE, SchemaShape, require_table
from ..errors import DanglingReference, NotFound, create_error_context
from ..logging_config import log_database_operation
from ..models.entities import normalize_key, validate_record


def _row_exists(session: Session, table: Table, column: str, value: Any) -> bool:
    return session.execute(
        select(table.c[column]).where(table.c[column] == value).limit(1)
    ).first() is not None


class EntryRepository:
    """
    Store and retrieve UniProt entries under the current schema shape.

    Records are plain dictionaries whose keys are exactly the entry columns
    of the active version.
    """

    def __init__(self, db_manager: DatabaseManager, context: SchemaContext):
        self.db_manager = db_manager
        self.context = context
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _entries(self, shape: SchemaShape, operation: str) -> Table:
        return require_table(shape.entries, shape, "Entries", operation)

    def upsert(self, entry: Union[Mapping[str, Any], BaseModel]) -> Dict[str, Any]:
        """
        Insert an entry or replace the stored one with the same accession number.

        Args:
            entry: Record with exactly the fields of the active entry shape

        Returns:
            The stored record

        Raises:
            ShapeMismatch: Fields absent from, or required by, the active shape
            InvalidValue: A value violates a constraint
            DanglingReference: The record names a family that does not exist
        """
        with self.context.reading("upsert_entry") as shape:
            table = self._entries(shape, "upsert_entry")
            record = validate_record(shape.entry_model, entry, shape.version)
            accession = record["accession_number"]

            with self.db_manager.get_transaction() as session:
                family = record.get("family")
                if shape.membership == MEMBERSHIP_COLUMN and family is not None:
                    if not _row_exists(session, shape.families, "name", family):
                        raise DanglingReference(
                            f"Entry {accession} references unknown family '{family}'",
                            context=create_error_context(
                                "upsert_entry", entity_id=accession, entity_type="entry",
                                schema_version=shape.version, family=family
                            )
                        )

                stmt = sqlite_insert(table).values(**record)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.accession_number],
                    set_={name: stmt.excluded[name] for name in record if name != "accession_number"}
                )
                session.execute(stmt)

        log_database_operation(self.logger, "UPSERT", table.name, count=1, entity_id=accession)
        return record

    def get(self, accession_number: str) -> Dict[str, Any]:
        """Return the stored entry or raise NotFound."""
        accession_number = normalize_key(accession_number)
        with self.context.reading("get_entry") as shape:
            table = self._entries(shape, "get_entry")
            with self.db_manager.get_session() as session:
                row = session.execute(
                    select(table).where(table.c.accession_number == accession_number)
                ).first()

        if row is None:
            raise NotFound(
                f"Entry {accession_number} not found",
                context=create_error_context("get_entry", entity_id=accession_number, entity_type="entry")
            )
        return dict(row._mapping)

    def exists(self, accession_number: str) -> bool:
        accession_number = normalize_key(accession_number)
        with self.context.reading("entry_exists") as shape:
            table = self._entries(shape, "entry_exists")
            with self.db_manager.get_session() as session:
                return _row_exists(session, table, "accession_number", accession_number)

    def delete(self, accession_number: str) -> bool:
        """
        Delete an entry together with its memberships.

        Deleting an entry that does not exist is a no-op.

        Returns:
            True if an entry was removed
        """
        accession_number = normalize_key(accession_number)
        with self.context.reading("delete_entry") as shape:
            table = self._entries(shape, "delete_entry")
            with self.db_manager.get_transaction() as session:
                memberships_removed = 0
                if shape.membership == MEMBERSHIP_TABLE_MODE:
                    memberships_removed = session.execute(
                        delete(shape.memberships).where(shape.memberships.c.entry == accession_number)
                    ).rowcount
                removed = session.execute(
                    delete(table).where(table.c.accession_number == accession_number)
                ).rowcount

        if removed:
            log_database_operation(self.logger, "DELETE", table.name, count=removed,
                                   entity_id=accession_number, memberships_removed=memberships_removed)
        else:
            self.logger.debug(f"Entry {accession_number} not present, nothing to delete")
        return removed > 0

    def list(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return stored entries ordered by accession number."""
        with self.context.reading("list_entries") as shape:
            table = self._entries(shape, "list_entries")
            query = select(table).order_by(table.c.accession_number)
            if limit is not None:
                query = query.limit(limit)
            with self.db_manager.get_session() as session:
                return [dict(row._mapping) for row in session.execute(query)]

    def count(self) -> int:
        with self.context.reading("count_entries") as shape:
            table = self._entries(shape, "count_entries")
            with self.db_manager.get_session() as session:
                return session.execute(select(func.count()).select_from(table)).scalar_one()


class FamilyRepository:
    """Store and retrieve families in whichever family table the shape declares."""

    def __init__(self, db_manager: DatabaseManager, context: SchemaContext):
        self.db_manager = db_manager
        self.context = context
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _families(self, shape: SchemaShape, operation: str) -> Table:
        return require_table(shape.families, shape, "Families", operation)

    def upsert(self, family: Union[str, Mapping[str, Any], BaseModel]) -> Dict[str, Any]:
        """Create a family; creating an existing family is a no-op."""
        if isinstance(family, str):
            family = {"name": family}

        with self.context.reading("upsert_family") as shape:
            table = self._families(shape, "upsert_family")
            record = validate_record(shape.family_model, family, shape.version)
            with self.db_manager.get_transaction() as session:
                created = session.execute(
                    sqlite_insert(table).values(**record).on_conflict_do_nothing()
                ).rowcount

        if created:
            log_database_operation(self.logger, "INSERT", table.name, count=created, entity_id=record["name"])
        return record

    def get(self, name: str) -> Dict[str, Any]:
        """Return the stored family or raise NotFound."""
        name = normalize_key(name)
        with self.context.reading("get_family") as shape:
            table = self._families(shape, "get_family")
            with self.db_manager.get_session() as session:
                row = session.execute(select(table).where(table.c.name == name)).first()

        if row is None:
            raise NotFound(
                f"Family '{name}' not found",
                context=create_error_context("get_family", entity_id=name, entity_type="family")
            )
        return dict(row._mapping)

    def exists(self, name: str) -> bool:
        name = normalize_key(name)
        with self.context.reading("family_exists") as shape:
            table = self._families(shape, "family_exists")
            with self.db_manager.get_session() as session:
                return _row_exists(session, table, "name", name)

    def delete(self, name: str) -> bool:
        """
        Delete a family and every membership that references it.

        While entries carry the family on their own row, a family that is
        still referenced cannot be deleted.

        Returns:
            True if a family was removed

        Raises:
            DanglingReference: Entries still reference the family by column
        """
        name = normalize_key(name)
        with self.context.reading("delete_family") as shape:
            table = self._families(shape, "delete_family")
            with self.db_manager.get_transaction() as session:
                if shape.membership == MEMBERSHIP_COLUMN:
                    referencing = session.execute(
                        select(func.count()).select_from(shape.entries)
                        .where(shape.entries.c.family == name)
                    ).scalar_one()
                    if referencing:
                        raise DanglingReference(
                            f"Family '{name}' is still referenced by {referencing} entries",
                            context=create_error_context(
                                "delete_family", entity_id=name, entity_type="family",
                                schema_version=shape.version
                            )
                        )
                elif shape.membership == MEMBERSHIP_TABLE_MODE:
                    session.execute(delete(shape.memberships).where(shape.memberships.c.family == name))
                removed = session.execute(delete(table).where(table.c.name == name)).rowcount

        if removed:
            log_database_operation(self.logger, "DELETE", table.name, count=removed, entity_id=name)
        return removed > 0

    def list(self) -> List[str]:
        """Return family names in alphabetical order."""
        with self.context.reading("list_families") as shape:
            table = self._families(shape, "list_families")
            with self.db_manager.get_session() as session:
                return list(session.execute(select(table.c.name).order_by(table.c.name)).scalars())
