"""
Configuration management for the UniProt Catalog Store.

This module provides configuration classes and utilities for managing
database settings, migration locking policy, ingestion sources, retry
policies and logging.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
import json

from .errors import ConfigurationError


LOCK_POLICIES = ("block", "fail_fast")


@dataclass
class RetryConfig:
    """Configuration for retry behavior across all external calls."""
    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 60.0


@dataclass
class DatabaseConfig:
    """Database connection settings."""
    path: str = "db/uniprot_catalog.db"  # SQLite file, or ":memory:"
    busy_timeout_seconds: float = 20.0
    echo: bool = False

    @property
    def is_memory(self) -> bool:
        return self.path == ":memory:"

    @property
    def connection_url(self) -> str:
        """Generate database connection URL."""
        if self.is_memory:
            return "sqlite://"
        return f"sqlite:///{self.path}"


@dataclass
class MigrationConfig:
    """Locking behavior while a migration holds the store."""
    lock_policy: str = "block"
    lock_timeout_seconds: Optional[float] = 300.0


@dataclass
class IngestConfig:
    """Settings for the similar-families ingester."""
    similar_url: str = (
        "https://ftp.uniprot.org/pub/databases/uniprot/current_release/"
        "knowledgebase/complete/docs/similar.txt"
    )
    species: List[str] = field(default_factory=lambda: ["HUMAN"])
    request_timeout: int = 60
    progress_every: int = 1000


@dataclass
class LoggingConfig:
    """Logging system configuration."""
    level: str = "INFO"
    format: str = "text"
    log_file: Optional[str] = None
    max_file_size_mb: int = 100
    backup_count: int = 5
    structured: bool = True


@dataclass
class SystemConfig:
    """Main system configuration combining all subsystem configs."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> "SystemConfig":
        """Check cross-field constraints, raising ConfigurationError."""
        if self.migration.lock_policy not in LOCK_POLICIES:
            raise ConfigurationError(
                f"Unknown lock policy '{self.migration.lock_policy}', "
                f"expected one of {', '.join(LOCK_POLICIES)}"
            )
        timeout = self.migration.lock_timeout_seconds
        if timeout is not None and timeout < 0:
            raise ConfigurationError("lock_timeout_seconds cannot be negative")
        if self.database.busy_timeout_seconds < 0:
            raise ConfigurationError("busy_timeout_seconds cannot be negative")
        if self.ingest.progress_every < 1:
            raise ConfigurationError("progress_every must be at least 1")
        if self.retry.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative")
        return self

    @classmethod
    def from_env(cls) -> "SystemConfig":
        """Create configuration from environment variables."""
        config = cls()

        try:
            # Database configuration from environment
            if os.getenv("DATABASE_PATH"):
                config.database.path = os.getenv("DATABASE_PATH")
            if os.getenv("DATABASE_BUSY_TIMEOUT"):
                config.database.busy_timeout_seconds = float(os.getenv("DATABASE_BUSY_TIMEOUT"))

            # Migration locking
            if os.getenv("MIGRATION_LOCK_POLICY"):
                config.migration.lock_policy = os.getenv("MIGRATION_LOCK_POLICY").lower()
            if os.getenv("MIGRATION_LOCK_TIMEOUT"):
                config.migration.lock_timeout_seconds = float(os.getenv("MIGRATION_LOCK_TIMEOUT"))

            # Ingestion
            if os.getenv("UNIPROT_SIMILAR_URL"):
                config.ingest.similar_url = os.getenv("UNIPROT_SIMILAR_URL")
            if os.getenv("UNIPROT_SIMILAR_SPECIES"):
                config.ingest.species = [
                    s.strip() for s in os.getenv("UNIPROT_SIMILAR_SPECIES").split(",") if s.strip()
                ]

            # Retry configuration from environment
            if os.getenv("MAX_RETRIES"):
                config.retry.max_retries = int(os.getenv("MAX_RETRIES"))
            if os.getenv("INITIAL_DELAY"):
                config.retry.initial_delay = float(os.getenv("INITIAL_DELAY"))
            if os.getenv("BACKOFF_MULTIPLIER"):
                config.retry.backoff_multiplier = float(os.getenv("BACKOFF_MULTIPLIER"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric value in environment: {e}", original_exception=e)

        # Logging configuration from environment
        if os.getenv("LOG_LEVEL"):
            config.logging.level = os.getenv("LOG_LEVEL")
        if os.getenv("LOG_FILE"):
            config.logging.log_file = os.getenv("LOG_FILE")

        return config.validate()

    @classmethod
    def from_file(cls, config_path: str) -> "SystemConfig":
        """Load configuration from JSON file."""
        try:
            with open(config_path, 'r') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {config_path}: {e}", original_exception=e)

        config = cls()

        for section in ("database", "migration", "ingest", "retry", "logging"):
            if section not in config_data:
                continue
            target = getattr(config, section)
            for key, value in config_data[section].items():
                if hasattr(target, key):
                    setattr(target, key, value)

        return config.validate()

    def to_file(self, config_path: str) -> None:
        """Save configuration to JSON file."""
        config_data = {
            "database": {
                "path": self.database.path,
                "busy_timeout_seconds": self.database.busy_timeout_seconds,
                "echo": self.database.echo
            },
            "migration": {
                "lock_policy": self.migration.lock_policy,
                "lock_timeout_seconds": self.migration.lock_timeout_seconds
            },
            "ingest": {
                "similar_url": self.ingest.similar_url,
                "species": list(self.ingest.species),
                "request_timeout": self.ingest.request_timeout,
                "progress_every": self.ingest.progress_every
            },
            "retry": {
                "max_retries": self.retry.max_retries,
                "initial_delay": self.retry.initial_delay,
                "backoff_multiplier": self.retry.backoff_multiplier,
                "max_delay": self.retry.max_delay
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
                "log_file": self.logging.log_file,
                "max_file_size_mb": self.logging.max_file_size_mb,
                "backup_count": self.logging.backup_count
            }
        }

        with open(config_path, 'w') as f:
            json.dump(config_data, f, indent=2)


# Global configuration instance
_config: Optional[SystemConfig] = None


def get_config() -> SystemConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = SystemConfig.from_env()
    return _config


def set_config(config: Optional[SystemConfig]) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def load_config_from_file(config_path: str) -> SystemConfig:
    """Load and set configuration from file."""
    config = SystemConfig.from_file(config_path)
    set_config(config)
    return config
