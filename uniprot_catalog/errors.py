"""
Error taxonomy and handling for the UniProt Catalog Store.

This module provides the store's exception hierarchy together with error
classification, contextual logging and recovery suggestions used by the
CLI, the ingester and the retry controller.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime


class ErrorCategory(Enum):
    """Categories of errors that can occur in the system."""
    MIGRATION = "migration"
    SHAPE = "shape"
    VALIDATION = "validation"
    REFERENCE = "reference"
    LOOKUP = "lookup"
    CONCURRENCY = "concurrency"
    DATABASE = "database"
    NETWORK = "network"
    DATA = "data"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorAction(Enum):
    """Actions to take when an error occurs."""
    RETRY = "retry"
    SKIP = "skip"
    FAIL = "fail"
    LOG_AND_CONTINUE = "log_and_continue"


@dataclass
class ErrorContext:
    """Contextual information about an error."""
    operation: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    schema_version: Optional[str] = None
    request_url: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorInfo:
    """Complete information about an error occurrence."""
    category: ErrorCategory
    severity: ErrorSeverity
    action: ErrorAction
    message: str
    original_exception: Exception
    context: ErrorContext
    recovery_suggestions: List[str] = field(default_factory=list)


class CatalogStoreError(Exception):
    """Base exception class for catalog store errors."""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(operation="unknown")
        self.original_exception = original_exception


class MigrationConflict(CatalogStoreError):
    """A migration step's preconditions do not hold (schema drift)."""
    category = ErrorCategory.MIGRATION
    severity = ErrorSeverity.CRITICAL


class IrreversibleStep(CatalogStoreError):
    """A downgrade reached a step that declares no inverse."""
    category = ErrorCategory.MIGRATION
    severity = ErrorSeverity.HIGH


class ShapeMismatch(CatalogStoreError):
    """A record or call does not fit the current schema version."""
    category = ErrorCategory.SHAPE
    severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        unexpected_fields: Optional[List[str]] = None,
        missing_fields: Optional[List[str]] = None,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context=context, original_exception=original_exception)
        self.unexpected_fields = unexpected_fields or []
        self.missing_fields = missing_fields or []


class InvalidValue(CatalogStoreError):
    """A field value violates a domain constraint."""
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.HIGH


class DanglingReference(CatalogStoreError):
    """A relation references an entry or family that does not exist."""
    category = ErrorCategory.REFERENCE
    severity = ErrorSeverity.HIGH


class NotFound(CatalogStoreError):
    """Lookup miss."""
    category = ErrorCategory.LOOKUP
    severity = ErrorSeverity.LOW


class MigrationInProgress(CatalogStoreError):
    """The store is exclusively held by a running migration."""
    category = ErrorCategory.CONCURRENCY
    severity = ErrorSeverity.MEDIUM


class DatabaseError(CatalogStoreError):
    """Errors raised by the storage engine."""
    category = ErrorCategory.DATABASE
    severity = ErrorSeverity.HIGH


class NetworkError(CatalogStoreError):
    """Errors related to network connectivity and timeouts."""
    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.MEDIUM


class DataError(CatalogStoreError):
    """Errors related to malformed upstream data."""
    category = ErrorCategory.DATA
    severity = ErrorSeverity.HIGH


class ConfigurationError(CatalogStoreError):
    """Errors related to system configuration."""
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class ErrorHandler:
    """
    Error handler with classification and recovery strategies.

    Provides centralized error handling with contextual logging and
    appropriate recovery actions for different error types.
    """

    def __init__(self):
        """Initialize error handler with logger."""
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._error_counts: Dict[str, int] = {}

    def classify_error(self, exception: Exception, context: ErrorContext) -> ErrorInfo:
        """
        Classify an exception and determine appropriate handling strategy.

        Args:
            exception: The exception to classify
            context: Contextual information about the error

        Returns:
            ErrorInfo with classification and recommended action
        """
        if isinstance(exception, CatalogStoreError):
            category, severity = exception.category, exception.severity
            message = exception.message
        else:
            category, severity = self._classify_standard_exception(exception)
            message = str(exception)

        return ErrorInfo(
            category=category,
            severity=severity,
            action=self._determine_action(category, severity),
            message=message,
            original_exception=exception,
            context=context,
            recovery_suggestions=self._get_recovery_suggestions(category)
        )

    def _classify_standard_exception(self, exception: Exception) -> tuple:
        """Classify standard and third-party exceptions by type name."""
        exception_type = type(exception).__name__

        if exception_type in ['ConnectionError', 'TimeoutError', 'ConnectTimeout', 'ReadTimeout',
                              'ConnectError', 'ReadError', 'RemoteProtocolError']:
            return ErrorCategory.NETWORK, ErrorSeverity.MEDIUM

        if exception_type == 'HTTPStatusError':
            response = getattr(exception, 'response', None)
            if response is not None and 400 <= response.status_code < 500:
                return ErrorCategory.NETWORK, ErrorSeverity.HIGH
            return ErrorCategory.NETWORK, ErrorSeverity.MEDIUM

        if exception_type in ['ValueError', 'KeyError', 'IndexError', 'UnicodeDecodeError']:
            return ErrorCategory.DATA, ErrorSeverity.HIGH

        if exception_type in ['OperationalError', 'IntegrityError', 'DatabaseError']:
            return ErrorCategory.DATABASE, ErrorSeverity.HIGH

        return ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM

    def _determine_action(self, category: ErrorCategory, severity: ErrorSeverity) -> ErrorAction:
        """Determine appropriate action based on error category and severity."""
        if category == ErrorCategory.NETWORK:
            # Client errors (4xx) will not improve on retry
            return ErrorAction.SKIP if severity == ErrorSeverity.HIGH else ErrorAction.RETRY
        elif category == ErrorCategory.CONCURRENCY:
            return ErrorAction.RETRY
        elif category in (ErrorCategory.SHAPE, ErrorCategory.VALIDATION,
                          ErrorCategory.REFERENCE, ErrorCategory.DATA):
            return ErrorAction.SKIP
        elif category == ErrorCategory.LOOKUP:
            return ErrorAction.LOG_AND_CONTINUE
        elif category in (ErrorCategory.MIGRATION, ErrorCategory.CONFIGURATION,
                          ErrorCategory.DATABASE):
            return ErrorAction.FAIL
        return ErrorAction.LOG_AND_CONTINUE

    def _get_recovery_suggestions(self, category: ErrorCategory) -> List[str]:
        """Get recovery suggestions for different error categories."""
        suggestions = {
            ErrorCategory.MIGRATION: [
                "Run 'migrate status' and compare with the live schema",
                "Fix rows that violate the new constraint before migrating",
                "Restore from backup if the schema was altered by hand"
            ],
            ErrorCategory.SHAPE: [
                "Check the current schema version",
                "Drop fields the current version does not declare",
                "Supply every field the current version requires"
            ],
            ErrorCategory.VALIDATION: [
                "Check field lengths and numeric ranges",
                "Verify data quality at the source"
            ],
            ErrorCategory.REFERENCE: [
                "Create the referenced entry or family first",
                "Check identifiers for typos"
            ],
            ErrorCategory.CONCURRENCY: [
                "Retry once the running migration has finished"
            ],
            ErrorCategory.DATABASE: [
                "Check the database file path and permissions",
                "Check for other processes holding the database lock"
            ],
            ErrorCategory.NETWORK: [
                "Check network connectivity",
                "Verify the source URL is reachable",
                "Consider increasing timeout values"
            ],
            ErrorCategory.DATA: [
                "Validate the upstream document format",
                "Check for truncated downloads"
            ],
            ErrorCategory.CONFIGURATION: [
                "Verify configuration file format and syntax",
                "Review environment variable settings"
            ]
        }
        return suggestions.get(category, ["Review error details and system logs"])

    def handle_error(self, exception: Exception, context: ErrorContext) -> ErrorInfo:
        """
        Handle an error with appropriate logging and classification.

        Args:
            exception: The exception to handle
            context: Contextual information about the error

        Returns:
            ErrorInfo with handling details
        """
        error_info = self.classify_error(exception, context)

        error_key = f"{error_info.category.value}:{error_info.context.operation}"
        self._error_counts[error_key] = self._error_counts.get(error_key, 0) + 1

        self._log_error(error_info)
        return error_info

    def _log_error(self, error_info: ErrorInfo) -> None:
        """Log error with contextual information."""
        log_data = {
            "error_category": error_info.category.value,
            "error_severity": error_info.severity.value,
            "recommended_action": error_info.action.value,
            "operation": error_info.context.operation,
            "entity_id": error_info.context.entity_id,
            "entity_type": error_info.context.entity_type,
            "schema_version": error_info.context.schema_version,
            "request_url": error_info.context.request_url,
            "exception_type": type(error_info.original_exception).__name__,
            "recovery_suggestions": error_info.recovery_suggestions
        }
        if error_info.context.additional_data:
            log_data.update(error_info.context.additional_data)

        if error_info.severity == ErrorSeverity.CRITICAL:
            self.logger.critical("Critical error occurred: %s", error_info.message, extra=log_data)
        elif error_info.severity == ErrorSeverity.HIGH:
            self.logger.error("High severity error: %s", error_info.message, extra=log_data)
        elif error_info.severity == ErrorSeverity.MEDIUM:
            self.logger.warning("Medium severity error: %s", error_info.message, extra=log_data)
        else:
            self.logger.info("Low severity error: %s", error_info.message, extra=log_data)

    def get_error_statistics(self) -> Dict[str, int]:
        """Get error count statistics."""
        return self._error_counts.copy()

    def reset_error_statistics(self) -> None:
        """Reset error count statistics."""
        self._error_counts.clear()


# Global error handler instance
_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler


def set_error_handler(handler: Optional[ErrorHandler]) -> None:
    """Set the global error handler instance."""
    global _error_handler
    _error_handler = handler


def handle_error(exception: Exception, context: ErrorContext) -> ErrorInfo:
    """Convenience function to handle errors using the global error handler."""
    return get_error_handler().handle_error(exception, context)


def create_error_context(
    operation: str,
    entity_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    schema_version: Optional[str] = None,
    request_url: Optional[str] = None,
    **additional_data
) -> ErrorContext:
    """
    Convenience function to create error context.

    Args:
        operation: Name of the operation being performed
        entity_id: ID of the entity being processed
        entity_type: Type of the entity being processed
        schema_version: Schema version active when the error occurred
        request_url: URL of the request that failed
        **additional_data: Additional contextual data

    Returns:
        ErrorContext instance
    """
    return ErrorContext(
        operation=operation,
        entity_id=entity_id,
        entity_type=entity_type,
        schema_version=schema_version,
        request_url=request_url,
        additional_data=additional_data
    )
