"""
Catalog store facade.

Opens the database, loads the persisted schema version and wires the
migration ledger, repositories and membership index around one shared
schema context.
"""

import logging
from typing import Any, Dict, List, Optional

from .config import SystemConfig, get_config
from .database.connection import DatabaseManager
from .database.context import SchemaContext
from .database.lock import StoreLock
from .database.membership import FamilyMembershipIndex
from .database.migrations import MigrationManager
from .database.repository import EntryRepository, FamilyRepository

logger = logging.getLogger(__name__)


class CatalogStore:
    """Schema-versioned store for UniProt entries, families and memberships."""

    def __init__(self, config: Optional[SystemConfig] = None,
                 db_manager: Optional[DatabaseManager] = None):
        self.config = config or get_config()
        self.db_manager = db_manager or DatabaseManager(self.config.database)
        self.context = SchemaContext(StoreLock(
            policy=self.config.migration.lock_policy,
            timeout=self.config.migration.lock_timeout_seconds
        ))
        self.ledger = MigrationManager(self.db_manager, self.context)
        self.entries = EntryRepository(self.db_manager, self.context)
        self.families = FamilyRepository(self.db_manager, self.context)
        self.memberships = FamilyMembershipIndex(self.db_manager, self.context)
        logger.info(
            f"Opened catalog store at schema version {self.context.shape.label}",
            extra={"database_path": self.config.database.path}
        )

    @property
    def version(self) -> Optional[str]:
        return self.context.version

    def apply_up(self, target_version: Optional[str] = None) -> List[str]:
        return self.ledger.apply_up(target_version)

    def apply_down(self, steps: int = 1) -> List[str]:
        return self.ledger.apply_down(steps)

    def status(self) -> Dict[str, Any]:
        return self.ledger.get_migration_status()

    def close(self) -> None:
        self.db_manager.close()

    def __enter__(self) -> "CatalogStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_store(config: Optional[SystemConfig] = None) -> CatalogStore:
    """Open a store and bring its schema to the latest version."""
    store = CatalogStore(config)
    store.apply_up()
    return store
