"""
Schema context shared by the ledger and the repositories.

The context carries the active schema version and its shape. It is created
from the persisted version marker when a store is opened and is only changed
by the migration ledger while it holds the store lock exclusively.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from .lock import StoreLock
from .schema import SchemaShape, shape_for


class SchemaContext:
    """Active schema version plus the lock guarding it."""

    def __init__(self, lock: StoreLock, version: Optional[str] = None):
        self.lock = lock
        self._shape = shape_for(version)

    @property
    def version(self) -> Optional[str]:
        return self._shape.version

    @property
    def shape(self) -> SchemaShape:
        return self._shape

    def set_version(self, version: Optional[str]) -> None:
        """Switch the active shape; callers must hold the lock exclusively."""
        self._shape = shape_for(version)

    @contextmanager
    def reading(self, operation: str) -> Generator[SchemaShape, None, None]:
        """Yield the active shape while holding the lock shared."""
        with self.lock.shared(operation):
            yield self._shape

    def __repr__(self) -> str:
        return f"<SchemaContext(version='{self._shape.label}')>"
