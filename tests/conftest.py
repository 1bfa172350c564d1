"""
Pytest configuration and shared fixtures for the test suite.
"""

import pytest
import json
import logging
from pathlib import Path
from uniprot_catalog.config import (
    SystemConfig, DatabaseConfig, MigrationConfig, IngestConfig, RetryConfig, LoggingConfig, set_config
)
from uniprot_catalog.database.schema import (
    V1_ENTRIES, V2_REQUIRED_MEASURES, V3_ENTRIES_WITHOUT_FAMILY, V4_MEMBERSHIP
)
from uniprot_catalog.errors import set_error_handler
from uniprot_catalog.store import CatalogStore


ALL_VERSIONS = [V1_ENTRIES, V2_REQUIRED_MEASURES, V3_ENTRIES_WITHOUT_FAMILY, V4_MEMBERSHIP]


def make_config(database_path: str, lock_policy: str = "block") -> SystemConfig:
    """Build a test configuration around a database path."""
    return SystemConfig(
        database=DatabaseConfig(path=database_path, busy_timeout_seconds=5.0),
        migration=MigrationConfig(lock_policy=lock_policy, lock_timeout_seconds=5.0),
        ingest=IngestConfig(
            similar_url="https://example.org/similar.txt",
            species=["HUMAN"],
            request_timeout=5,
            progress_every=2
        ),
        retry=RetryConfig(
            max_retries=2,
            initial_delay=0.0,
            backoff_multiplier=1.5,
            max_delay=0.01
        ),
        logging=LoggingConfig(level="WARNING")
    )


@pytest.fixture
def database_path(tmp_path):
    """Path of a fresh SQLite database file."""
    return str(tmp_path / "db" / "catalog.db")


@pytest.fixture
def test_config(database_path):
    """Create a test configuration backed by a temporary database file."""
    return make_config(database_path)


@pytest.fixture
def temp_config_file(tmp_path, database_path):
    """Create a temporary configuration file for testing."""
    config_data = {
        "database": {
            "path": database_path,
            "busy_timeout_seconds": 3.0
        },
        "migration": {
            "lock_policy": "fail_fast",
            "lock_timeout_seconds": 1.5
        },
        "ingest": {
            "similar_url": "https://example.org/similar.txt",
            "species": ["HUMAN", "MOUSE"],
            "progress_every": 10
        },
        "retry": {
            "max_retries": 2,
            "initial_delay": 0.1,
            "backoff_multiplier": 1.5,
            "max_delay": 5.0
        },
        "logging": {
            "level": "DEBUG",
            "format": "json"
        }
    }

    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(config_data))
    return str(config_file)


@pytest.fixture
def mock_env_vars(monkeypatch, database_path):
    """Set up mock environment variables for testing."""
    env_vars = {
        "DATABASE_PATH": database_path,
        "DATABASE_BUSY_TIMEOUT": "7.5",
        "MIGRATION_LOCK_POLICY": "FAIL_FAST",
        "MIGRATION_LOCK_TIMEOUT": "2",
        "UNIPROT_SIMILAR_SPECIES": "HUMAN, MOUSE",
        "MAX_RETRIES": "5",
        "LOG_LEVEL": "DEBUG"
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


@pytest.fixture
def store(test_config):
    """An unversioned store on a fresh database file."""
    catalog = CatalogStore(test_config)
    yield catalog
    catalog.close()


@pytest.fixture
def store_at(store):
    """Bring the store to a given schema version and return it."""
    def _at(version):
        store.apply_up(version)
        assert store.version == version
        return store
    return _at


@pytest.fixture(autouse=True)
def setup_test_config(test_config):
    """Automatically set up test configuration and a fresh error handler for all tests."""
    set_config(test_config)
    set_error_handler(None)

    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level

    yield test_config

    # setup_logging replaces root handlers, some bound to streams closed after the test
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
    set_config(None)
    set_error_handler(None)


@pytest.fixture(scope="session")
def test_data_dir():
    """Get the test data directory path."""
    return Path(__file__).parent / "data"
