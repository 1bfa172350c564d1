"""
Database layer for the UniProt Catalog Store.

This package provides the versioned schema shapes, connection management,
the migration ledger, and the entry, family and membership repositories.
"""

from .schema import (
    SHAPES,
    SchemaShape,
    ENTRIES_TABLE,
    FAMILIES_TABLE,
    SIMILARITY_FAMILIES_TABLE,
    MEMBERSHIP_TABLE,
    V1_ENTRIES,
    V2_REQUIRED_MEASURES,
    V3_ENTRIES_WITHOUT_FAMILY,
    V4_MEMBERSHIP,
)
from .connection import DatabaseManager
from .lock import StoreLock
from .context import SchemaContext
from .migrations import (
    Migration,
    MigrationManager,
    default_migrations,
)
from .repository import EntryRepository, FamilyRepository
from .membership import FamilyMembershipIndex

__all__ = [
    # Schema
    "SHAPES",
    "SchemaShape",
    "ENTRIES_TABLE",
    "FAMILIES_TABLE",
    "SIMILARITY_FAMILIES_TABLE",
    "MEMBERSHIP_TABLE",
    "V1_ENTRIES",
    "V2_REQUIRED_MEASURES",
    "V3_ENTRIES_WITHOUT_FAMILY",
    "V4_MEMBERSHIP",

    # Connection management
    "DatabaseManager",

    # Concurrency
    "StoreLock",
    "SchemaContext",

    # Migrations
    "Migration",
    "MigrationManager",
    "default_migrations",

    # Repositories
    "EntryRepository",
    "FamilyRepository",
    "FamilyMembershipIndex",
]
