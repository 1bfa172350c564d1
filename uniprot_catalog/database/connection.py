"""
Database connection management and session handling.

This module provides engine creation, SQLite connection tuning, and
session/transaction lifecycle management for the UniProt Catalog Store.
Every transaction starts with ``BEGIN IMMEDIATE`` so schema changes are
transactional and concurrent writers serialize on the database lock.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional
from sqlalchemy import create_engine, Engine, Connection, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError

from ..config import DatabaseConfig, get_config
from ..errors import CatalogStoreError, DatabaseError, create_error_context

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages database connections, sessions and transactions."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """Initialize database manager with configuration."""
        self.config = config or get_config().database
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def _get_connect_args(self) -> dict:
        return {
            "check_same_thread": False,
            "timeout": self.config.busy_timeout_seconds
        }

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            options = {
                "echo": self.config.echo,
                "connect_args": self._get_connect_args(),
            }
            if self.config.is_memory:
                # One shared connection, otherwise every checkout sees an empty database
                options["poolclass"] = StaticPool
            else:
                Path(self.config.path).parent.mkdir(parents=True, exist_ok=True)

            self._engine = create_engine(self.config.connection_url, **options)

            @event.listens_for(self._engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                # Hand transaction control to the "begin" listener below
                dbapi_connection.isolation_level = None
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.close()

            @event.listens_for(self._engine, "begin")
            def do_begin(conn):
                conn.exec_driver_sql("BEGIN IMMEDIATE")

            logger.info(f"Created SQLITE database engine for {self.config.path}")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                expire_on_commit=False
            )
        return self._session_factory

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session for read operations.

        Usage:
            with db_manager.get_session() as session:
                session.execute(select(table))
        """
        session = self.session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error, rolling back: {e}")
            raise DatabaseError(
                f"Database read failed: {e}",
                context=create_error_context("session"),
                original_exception=e
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def get_transaction(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic transaction commit/rollback.

        Usage:
            with db_manager.get_transaction() as session:
                session.execute(insert(table).values(...))
                # Automatic commit on success, rollback on exception
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database transaction failed, rolling back: {e}")
            raise DatabaseError(
                f"Database transaction failed: {e}",
                context=create_error_context("transaction"),
                original_exception=e
            ) from e
        except CatalogStoreError as e:
            session.rollback()
            logger.debug(f"Transaction rolled back: {e.message}")
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Database transaction failed, rolling back: {e}")
            raise
        finally:
            session.close()

    @contextmanager
    def get_ddl_connection(self) -> Generator[Connection, None, None]:
        """
        Get a connection inside one transaction for schema changes.

        DDL and the ledger bookkeeping issued through the connection commit
        together or not at all.
        """
        try:
            with self.engine.begin() as connection:
                yield connection
        except SQLAlchemyError as e:
            logger.error(f"Schema transaction failed, rolled back: {e}")
            raise DatabaseError(
                f"Schema transaction failed: {e}",
                context=create_error_context("ddl"),
                original_exception=e
            ) from e

    def close(self) -> None:
        """Close database connections and clean up resources."""
        if self._engine:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine disposed")
