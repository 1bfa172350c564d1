"""
Unit tests for the logging configuration system.
"""

import pytest
import logging
import json
import sys
from uniprot_catalog.logging_config import (
    JSONFormatter, PerformanceFilter, ContextualFormatter, MetricsHandler, setup_logging,
    get_logging_metrics, log_database_operation, log_migration_step, _parse_file_size
)
from uniprot_catalog.config import LoggingConfig


def make_record(level=logging.INFO, msg="Test message", exc_info=None):
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="/test/path.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info
    )
    record.module = "test_module"
    record.funcName = "test_function"
    return record


class TestJSONFormatter:
    """Test JSON log formatter functionality."""

    def test_basic_formatting(self):
        """Test basic JSON log formatting."""
        log_data = json.loads(JSONFormatter().format(make_record()))

        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "test_logger"
        assert log_data["message"] == "Test message"
        assert log_data["module"] == "test_module"
        assert log_data["function"] == "test_function"
        assert log_data["line"] == 42
        assert "timestamp" in log_data
        assert "extra" not in log_data

    def test_formatting_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        record = make_record()
        record.migration_version = "2024-11-15-161840"
        record.record_count = 3

        log_data = json.loads(JSONFormatter().format(record))

        assert log_data["extra"] == {"migration_version": "2024-11-15-161840", "record_count": 3}

    def test_formatting_with_exception(self):
        """Test JSON formatting with exception information."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        log_data = json.loads(JSONFormatter().format(make_record(logging.ERROR, "Error occurred", exc_info)))

        assert "ValueError: Test exception" in log_data["exception"]

    def test_performance_section(self):
        record = make_record()
        PerformanceFilter().filter(record)

        log_data = json.loads(JSONFormatter(include_performance=True).format(record))

        assert set(log_data["performance"]) == {
            "cpu_percent", "memory_mb", "uptime_seconds", "process_id", "thread_id"
        }
        assert "extra" not in log_data


class TestContextualFormatter:
    """Test the human-readable formatter."""

    def test_format_without_filter(self):
        line = ContextualFormatter().format(make_record(logging.WARNING, "Schema drift"))
        assert "[WARNING] test_logger:test_function:42 - Schema drift" in line
        assert "CPU: 0.0%" in line


class TestPerformanceFilter:
    """Test performance filter functionality."""

    def test_performance_metrics_addition(self):
        """Test adding performance metrics to log records."""
        record = make_record()

        assert PerformanceFilter().filter(record) is True
        assert hasattr(record, 'cpu_percent')
        assert hasattr(record, 'memory_mb')
        assert hasattr(record, 'uptime_seconds')
        assert hasattr(record, 'process_id')
        assert hasattr(record, 'iso_timestamp')


class TestMetricsHandler:
    """Test log metrics collection."""

    def test_counts_by_level(self):
        handler = MetricsHandler()
        for level in (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.ERROR):
            handler.emit(make_record(level))

        metrics = handler.get_metrics()
        assert metrics["total_logs"] == 5
        assert metrics["error_count"] == 2
        assert metrics["warning_count"] == 1
        assert metrics["info_count"] == 1
        assert metrics["debug_count"] == 1
        assert metrics["error_rate"] == pytest.approx(0.4)
        assert metrics["last_error"]["message"] == "Test message"


class TestLoggingSetup:
    """Test logging system setup."""

    def test_setup_logging_basic(self):
        """Test basic logging setup."""
        setup_logging(LoggingConfig(level="DEBUG", format="json"))

        root_logger = logging.getLogger()
        assert root_logger.level == logging.DEBUG
        assert len(root_logger.handlers) == 2  # Metrics + console
        assert logging.getLogger("sqlalchemy").level == logging.WARNING
        assert get_logging_metrics()["info_count"] >= 1

    def test_setup_logging_with_file(self, tmp_path):
        """Test logging setup with file handler."""
        log_file = tmp_path / "logs" / "catalog.log"
        config = LoggingConfig(
            level="INFO",
            format="json",
            log_file=str(log_file),
            max_file_size_mb=1,
            backup_count=3
        )
        setup_logging(config)

        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 3  # Metrics + console + file

        logging.getLogger("test").info("Test message")

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert any(line["message"] == "Test message" for line in lines)

    def test_parse_file_size(self):
        assert _parse_file_size("1KB") == 1024
        assert _parse_file_size("2mb") == 2 * 1024 * 1024
        assert _parse_file_size("1GB") == 1024 ** 3
        assert _parse_file_size("512") == 512


class TestLoggingUtilities:
    """Test logging utility functions."""

    def test_log_database_operation_success(self, caplog):
        """Test logging successful database operation."""
        logger = logging.getLogger("test_db")

        with caplog.at_level(logging.DEBUG):
            log_database_operation(logger, "UPSERT", "uniprot_entries", count=1, entity_id="P12345")

        record = caplog.records[0]
        assert record.levelno == logging.DEBUG
        assert record.getMessage() == "Database UPSERT on uniprot_entries affected 1 records"
        assert record.table == "uniprot_entries"
        assert record.record_count == 1
        assert record.entity_id == "P12345"

    def test_log_database_operation_error(self, caplog):
        """Test logging failed database operation."""
        logger = logging.getLogger("test_db")

        with caplog.at_level(logging.DEBUG):
            log_database_operation(logger, "DELETE", "uniprot_entries", error="database is locked")

        record = caplog.records[0]
        assert record.levelno == logging.ERROR
        assert "failed: database is locked" in record.getMessage()

    def test_log_migration_step_success(self, caplog):
        logger = logging.getLogger("test_migrations")

        with caplog.at_level(logging.INFO):
            log_migration_step(logger, "up", "2024-11-12-204040", "uniprot_entries", duration=0.5)

        record = caplog.records[0]
        assert record.getMessage() == "Migration up 2024-11-12-204040_uniprot_entries completed"
        assert record.success is True
        assert record.duration_ms == 500

    def test_log_migration_step_error(self, caplog):
        logger = logging.getLogger("test_migrations")

        with caplog.at_level(logging.INFO):
            log_migration_step(logger, "down", "2024-11-15-161712", "uniprot_entries", error="no inverse")

        record = caplog.records[0]
        assert record.levelno == logging.ERROR
        assert record.success is False
        assert record.error == "no inverse"
