"""
Readers/writer lock separating schema migrations from repository traffic.

Migrations take the lock exclusively; repository and membership operations
share it. Waiting writers block new readers, so a migration is not starved by
a steady stream of repository calls.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Generator, Optional

from ..errors import DatabaseError, MigrationInProgress, create_error_context

logger = logging.getLogger(__name__)

POLICY_BLOCK = "block"
POLICY_FAIL_FAST = "fail_fast"


class StoreLock:
    """Process-wide readers/writer lock over one catalog store."""

    def __init__(self, policy: str = POLICY_BLOCK, timeout: Optional[float] = None):
        """
        Args:
            policy: "block" waits for a running migration, "fail_fast" raises
                MigrationInProgress immediately
            timeout: Maximum seconds to wait in blocking mode (None waits forever)
        """
        if policy not in (POLICY_BLOCK, POLICY_FAIL_FAST):
            raise ValueError(f"Unknown lock policy: {policy}")
        self.policy = policy
        self.timeout = timeout
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    @property
    def migration_active(self) -> bool:
        with self._cond:
            return self._writer_active

    def _writer_pending(self) -> bool:
        return self._writer_active or self._writers_waiting > 0

    @contextmanager
    def shared(self, operation: str = "repository") -> Generator[None, None, None]:
        """Hold the lock for a repository operation."""
        with self._cond:
            if self._writer_pending():
                if self.policy == POLICY_FAIL_FAST:
                    raise MigrationInProgress(
                        f"Cannot run {operation}: a schema migration holds the store",
                        context=create_error_context(operation)
                    )
                logger.debug(f"{operation} waiting for running migration")
                if not self._cond.wait_for(lambda: not self._writer_pending(), self.timeout):
                    raise MigrationInProgress(
                        f"Timed out after {self.timeout}s waiting for migration to finish before {operation}",
                        context=create_error_context(operation, timeout=self.timeout)
                    )
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self, operation: str = "migration") -> Generator[None, None, None]:
        """Hold the lock for a schema migration."""
        started = time.monotonic()
        with self._cond:
            self._writers_waiting += 1
            try:
                acquired = self._cond.wait_for(
                    lambda: not self._writer_active and self._readers == 0, self.timeout
                )
            finally:
                self._writers_waiting -= 1
            if not acquired:
                # Readers blocked behind this writer may proceed again
                self._cond.notify_all()
                if self._writer_active:
                    raise MigrationInProgress(
                        f"Cannot run {operation}: another migration holds the store",
                        context=create_error_context(operation)
                    )
                raise DatabaseError(
                    f"Timed out after {self.timeout}s waiting for in-flight operations before {operation}",
                    context=create_error_context(operation, readers=self._readers)
                )
            self._writer_active = True
        logger.debug(
            f"Acquired exclusive store lock for {operation}",
            extra={"wait_seconds": time.monotonic() - started}
        )
        try:
            yield
        finally:
            with self._cond:
                self._writer_active = False
                self._cond.notify_all()
