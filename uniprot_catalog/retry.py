"""
Retry controller for calls to external sources.

This module provides configurable retry logic with exponential backoff.
Errors are classified by the error handler and only those it recommends
retrying are attempted again.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from .config import RetryConfig
from .errors import ErrorAction, ErrorContext, ErrorHandler

T = TypeVar('T')

logger = logging.getLogger(__name__)


class RetryController:
    """
    Configurable retry controller with exponential backoff logic.
    """

    def __init__(self, config: RetryConfig, sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            config: RetryConfig instance with retry parameters
            sleep: Function used to wait between attempts
        """
        self.config = config
        self._sleep = sleep
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for retry attempt using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds, capped at max_delay
        """
        delay = self.config.initial_delay * (self.config.backoff_multiplier ** attempt)
        return min(delay, self.config.max_delay)

    def log_retry_attempt(self, source: str, operation: str, attempt: int, error: Exception, delay: float) -> None:
        self.logger.warning(
            "Retry attempt for %s operation on %s",
            operation,
            source,
            extra={
                "source": source,
                "operation": operation,
                "attempt_number": attempt,
                "max_retries": self.config.max_retries,
                "delay_seconds": delay,
                "error_type": type(error).__name__,
                "error_message": str(error)
            }
        )

    def log_final_failure(self, source: str, operation: str, error: Exception) -> None:
        self.logger.error(
            "Final failure for %s operation on %s after %d retries",
            operation,
            source,
            self.config.max_retries,
            extra={
                "source": source,
                "operation": operation,
                "max_retries": self.config.max_retries,
                "error_type": type(error).__name__,
                "error_message": str(error),
                "final_failure": True
            }
        )

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        source: str,
        operation_name: str,
        error_handler: Optional[ErrorHandler] = None
    ) -> T:
        """
        Execute operation with retry logic.

        Args:
            operation: Function to execute with retry logic
            source: Name of the external source being accessed
            operation_name: Description of the operation for logging
            error_handler: Optional error handler for classification

        Returns:
            Result of the operation

        Raises:
            Exception: The last exception if all retries are exhausted, or the
                first exception classified as not worth retrying
        """
        handler = error_handler or ErrorHandler()

        for attempt in range(self.config.max_retries + 1):
            try:
                return operation()
            except Exception as e:
                context = ErrorContext(
                    operation=operation_name,
                    additional_data={"attempt": attempt + 1, "max_retries": self.config.max_retries}
                )
                error_info = handler.classify_error(e, context)

                if attempt == self.config.max_retries:
                    self.log_final_failure(source, operation_name, e)
                    raise

                if error_info.action != ErrorAction.RETRY:
                    self.logger.info(
                        "Error classified as non-retryable for %s operation on %s",
                        operation_name,
                        source,
                        extra={
                            "source": source,
                            "operation": operation_name,
                            "error_category": error_info.category.value,
                            "recommended_action": error_info.action.value,
                            "attempt": attempt + 1
                        }
                    )
                    raise

                delay = self.calculate_delay(attempt)
                self.log_retry_attempt(source, operation_name, attempt + 1, e, delay)
                self._sleep(delay)

        raise RuntimeError("Unexpected retry loop exit")
