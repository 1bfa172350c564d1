"""
Logging configuration for the UniProt Catalog Store.

This module provides structured logging with process metrics, contextual
information and configurable output formats. Migration steps and storage
operations log through the helpers at the bottom of this module so their
records carry consistent ``extra`` fields.
"""

import logging
import logging.handlers
import json
import sys
import time
from datetime import datetime
from typing import Dict, Any, Optional
from pathlib import Path
import psutil
import os

from .config import LoggingConfig


# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'message',
    'taskName', 'cpu_percent', 'memory_mb', 'uptime_seconds',
    'process_id', 'thread_id', 'iso_timestamp'
])


class PerformanceFilter(logging.Filter):
    """Filter to add process metrics to log records."""

    def __init__(self):
        super().__init__()
        self.process = psutil.Process()
        self.start_time = time.time()

    def filter(self, record):
        """Add process metrics to the log record."""
        try:
            record.cpu_percent = self.process.cpu_percent()
            record.memory_mb = self.process.memory_info().rss / 1024 / 1024
        except psutil.Error:
            record.cpu_percent = 0.0
            record.memory_mb = 0.0

        record.uptime_seconds = time.time() - self.start_time
        record.process_id = os.getpid()
        record.thread_id = record.thread
        record.iso_timestamp = datetime.fromtimestamp(record.created).isoformat()
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_performance=True):
        super().__init__()
        self.include_performance = include_performance

    def format(self, record):
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        if self.include_performance and hasattr(record, 'cpu_percent'):
            log_entry["performance"] = {
                "cpu_percent": getattr(record, 'cpu_percent', 0),
                "memory_mb": getattr(record, 'memory_mb', 0),
                "uptime_seconds": getattr(record, 'uptime_seconds', 0),
                "process_id": getattr(record, 'process_id', 0),
                "thread_id": getattr(record, 'thread_id', 0)
            }

        return json.dumps(log_entry, default=str)


class ContextualFormatter(logging.Formatter):
    """Human-readable formatter with contextual information."""

    def __init__(self, include_performance=True):
        super().__init__()
        self.include_performance = include_performance

        format_str = (
            "%(iso_timestamp)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d - %(message)s"
        )
        if include_performance:
            format_str += " [CPU: %(cpu_percent).1f%% MEM: %(memory_mb).1fMB]"

        self._formatter = logging.Formatter(format_str)

    def format(self, record):
        """Format log record with contextual information."""
        if not hasattr(record, 'iso_timestamp'):
            record.iso_timestamp = datetime.fromtimestamp(record.created).isoformat()
        if not hasattr(record, 'cpu_percent'):
            record.cpu_percent = 0.0
        if not hasattr(record, 'memory_mb'):
            record.memory_mb = 0.0

        return self._formatter.format(record)


class MetricsHandler(logging.Handler):
    """Handler to collect logging metrics."""

    def __init__(self):
        super().__init__()
        self.metrics = {
            'total_logs': 0,
            'error_count': 0,
            'warning_count': 0,
            'info_count': 0,
            'debug_count': 0,
            'last_error': None,
            'last_warning': None,
            'start_time': time.time()
        }

    def _describe(self, record) -> Dict[str, Any]:
        return {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'message': record.getMessage(),
            'logger': record.name,
            'function': record.funcName,
            'line': record.lineno
        }

    def emit(self, record):
        """Collect metrics from log records."""
        self.metrics['total_logs'] += 1

        if record.levelno >= logging.ERROR:
            self.metrics['error_count'] += 1
            self.metrics['last_error'] = self._describe(record)
        elif record.levelno >= logging.WARNING:
            self.metrics['warning_count'] += 1
            self.metrics['last_warning'] = self._describe(record)
        elif record.levelno >= logging.INFO:
            self.metrics['info_count'] += 1
        else:
            self.metrics['debug_count'] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Get collected metrics."""
        uptime = time.time() - self.metrics['start_time']
        total = self.metrics['total_logs']
        return {
            **self.metrics,
            'uptime_seconds': uptime,
            'logs_per_second': total / uptime if uptime > 0 else 0,
            'error_rate': self.metrics['error_count'] / total if total > 0 else 0
        }


# Global metrics handler instance
_metrics_handler: Optional[MetricsHandler] = None


def get_logging_metrics() -> Dict[str, Any]:
    """Get logging metrics."""
    if _metrics_handler:
        return _metrics_handler.get_metrics()
    return {}


def _build_formatter(config: LoggingConfig) -> logging.Formatter:
    if config.format.lower() == 'json' and config.structured:
        return JSONFormatter(include_performance=True)
    return ContextualFormatter(include_performance=True)


def setup_logging(config: LoggingConfig) -> None:
    """
    Set up logging configuration.

    Args:
        config: Logging configuration object
    """
    global _metrics_handler

    level = getattr(logging, config.level.upper(), logging.INFO)

    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    perf_filter = PerformanceFilter()

    _metrics_handler = MetricsHandler()
    root_logger.addHandler(_metrics_handler)

    # Console output goes to stderr so CLI results on stdout stay parseable
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.addFilter(perf_filter)
    console_handler.setFormatter(_build_formatter(config))
    root_logger.addHandler(console_handler)

    if config.log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.log_file,
            maxBytes=_parse_file_size(f"{config.max_file_size_mb}MB"),
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.addFilter(perf_filter)
        file_handler.setFormatter(_build_formatter(config))
        root_logger.addHandler(file_handler)

    _configure_library_loggers()

    logging.getLogger(__name__).info(
        "Logging system initialized",
        extra={
            "log_level": config.level,
            "log_format": config.format,
            "structured": config.structured,
            "file_logging": bool(config.log_file)
        }
    )


def _parse_file_size(size_str: str) -> int:
    """Parse file size string to bytes."""
    size_str = size_str.upper().strip()

    if size_str.endswith('KB'):
        return int(size_str[:-2]) * 1024
    elif size_str.endswith('MB'):
        return int(size_str[:-2]) * 1024 * 1024
    elif size_str.endswith('GB'):
        return int(size_str[:-2]) * 1024 * 1024 * 1024
    else:
        return int(size_str)


def _configure_library_loggers():
    """Configure logging levels for third-party libraries."""
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)


def log_database_operation(logger: logging.Logger, operation: str, table: str,
                           count: Optional[int] = None, duration: Optional[float] = None,
                           error: Optional[str] = None, **kwargs):
    """
    Log database operation metrics.

    Args:
        logger: Logger instance
        operation: Database operation (UPSERT, DELETE, SELECT)
        table: Database table name
        count: Number of records affected
        duration: Operation duration in seconds
        error: Error message if operation failed
        **kwargs: Additional context
    """
    level = logging.ERROR if error else logging.DEBUG

    extra_data = {
        "operation": operation,
        "table": table,
        "database_operation": True,
        **kwargs
    }
    if count is not None:
        extra_data["record_count"] = count
    if duration is not None:
        extra_data["duration_seconds"] = duration
        extra_data["duration_ms"] = duration * 1000
    if error:
        extra_data["error"] = error

    message = f"Database {operation} on {table}"
    if error:
        message += f" failed: {error}"
    elif count is not None:
        message += f" affected {count} records"

    logger.log(level, message, extra=extra_data)


def log_migration_step(logger: logging.Logger, direction: str, version: str,
                       name: str, duration: Optional[float] = None,
                       error: Optional[str] = None):
    """
    Log the outcome of a single migration step.

    Args:
        logger: Logger instance
        direction: "up" or "down"
        version: Step version identifier
        name: Step name
        duration: Step duration in seconds
        error: Error message if the step failed
    """
    extra_data = {
        "migration_direction": direction,
        "migration_version": version,
        "migration_name": name,
        "success": error is None,
    }
    if duration is not None:
        extra_data["duration_ms"] = duration * 1000
    if error:
        extra_data["error"] = error
        logger.error(f"Migration {direction} {version}_{name} failed: {error}", extra=extra_data)
    else:
        logger.info(f"Migration {direction} {version}_{name} completed", extra=extra_data)


def log_error_with_context(logger: logging.Logger, error: Exception,
                           operation: str, **context):
    """
    Log error with full context information.

    Args:
        logger: Logger instance
        error: Exception that occurred
        operation: Operation that failed
        **context: Additional context information
    """
    logger.error(
        f"Error in {operation}: {str(error)}",
        exc_info=True,
        extra={
            "operation": operation,
            "error_type": type(error).__name__,
            "error_message": str(error),
            **context
        }
    )
