"""
Error handling utilities for the Strava activity relay.

This module provides custom exceptions, error handling decorators, and
validation helpers for consistent error management across all components.
"""

import functools
import traceback
from typing import Any, Callable, Optional
from enum import Enum

from .logging_config import get_logger

logger = get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class StravaRelayError(Exception):
    """Base exception class for all application-specific errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        error_code: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize the error.

        Args:
            message: Human-readable error message
            severity: Error severity level
            error_code: Optional error code for categorization
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.error_code = error_code
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        parts = [f"[{self.severity.value.upper()}]"]

        if self.error_code:
            parts.append(f"({self.error_code})")

        parts.append(self.message)

        if self.original_error:
            parts.append(f"Caused by: {str(self.original_error)}")

        return " ".join(parts)


class ConfigurationError(StravaRelayError):
    """Raised when there are configuration-related issues."""

    def __init__(self, message: str, config_field: Optional[str] = None):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            error_code="CONFIG_ERROR"
        )
        self.config_field = config_field


class APIError(StravaRelayError):
    """Raised when Strava API operations fail."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        original_error: Optional[Exception] = None,
        error_code: str = "API_ERROR"
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            error_code=error_code,
            original_error=original_error
        )
        self.status_code = status_code
        self.endpoint = endpoint


class RateLimitError(APIError):
    """Raised when the upstream API answers 429 despite local budgeting."""

    def __init__(self, message: str = "API rate limit exceeded", retry_after: Optional[int] = None):
        super().__init__(
            message,
            status_code=429,
            error_code="RATE_LIMIT"
        )
        self.retry_after = retry_after


class AuthenticationError(APIError):
    """Raised when API authentication fails."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message,
            status_code=401,
            error_code="AUTH_ERROR"
        )


class RelayError(StravaRelayError):
    """Raised when delivery to the chat platform fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, original_error: Optional[Exception] = None):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            error_code="RELAY_ERROR",
            original_error=original_error
        )
        self.status_code = status_code


class QueueError(StravaRelayError):
    """Raised on misuse of the delay queue."""

    def __init__(self, message: str, item_id: Optional[int] = None):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            error_code="QUEUE_ERROR"
        )
        self.item_id = item_id


class DuplicateQueueItemError(QueueError):
    """Raised when an activity is enqueued while an entry for it is still pending."""


class ValidationError(StravaRelayError):
    """Raised when data validation fails."""

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            error_code="VALIDATION_ERROR"
        )
        self.field = field
        self.value = value


def _log_error(func_name: str, e: Exception) -> None:
    if isinstance(e, StravaRelayError):
        if e.severity == ErrorSeverity.CRITICAL:
            logger.critical(f"Critical error in {func_name}: {e}")
        elif e.severity == ErrorSeverity.HIGH:
            logger.error(f"High severity error in {func_name}: {e}")
        elif e.severity == ErrorSeverity.MEDIUM:
            logger.warning(f"Medium severity error in {func_name}: {e}")
        else:
            logger.info(f"Low severity error in {func_name}: {e}")
    else:
        logger.error(f"Unexpected error in {func_name}: {e}")
        logger.debug(f"Traceback: {traceback.format_exc()}")


def handle_errors(
    default_return: Any = None,
    reraise: bool = False,
    log_errors: bool = True,
    error_types: Optional[tuple] = None
):
    """
    Decorator for comprehensive error handling.

    Args:
        default_return: Value to return if an error occurs
        reraise: Whether to reraise the exception after handling
        log_errors: Whether to log errors
        error_types: Tuple of exception types to catch (catches all if None)

    Returns:
        Decorated function with error handling
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if error_types and not isinstance(e, error_types):
                    raise

                if log_errors:
                    _log_error(func.__name__, e)

                if reraise:
                    raise

                return default_return

        return wrapper
    return decorator


def handle_async_errors(
    default_return: Any = None,
    reraise: bool = False,
    log_errors: bool = True,
    error_types: Optional[tuple] = None
):
    """
    Decorator for comprehensive async error handling.

    Args:
        default_return: Value to return if an error occurs
        reraise: Whether to reraise the exception after handling
        log_errors: Whether to log errors
        error_types: Tuple of exception types to catch (catches all if None)

    Returns:
        Decorated async function with error handling
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if error_types and not isinstance(e, error_types):
                    raise

                if log_errors:
                    _log_error(func.__name__, e)

                if reraise:
                    raise

                return default_return

        return wrapper
    return decorator


def validate_required_fields(data: dict, required_fields: list, context: str = "data") -> None:
    """
    Validate that required fields are present in data.

    Args:
        data: Dictionary to validate
        required_fields: List of required field names
        context: Context description for error messages

    Raises:
        ValidationError: If any required fields are missing
    """
    missing_fields = [field for field in required_fields if field not in data or data[field] is None]

    if missing_fields:
        raise ValidationError(
            f"Missing required fields in {context}: {', '.join(missing_fields)}",
            field=missing_fields[0] if len(missing_fields) == 1 else None
        )


def create_error_context(operation: str, component: str, additional_info: Optional[dict] = None) -> dict:
    """
    Create standardized error context for logging and debugging.

    Args:
        operation: Operation being performed
        component: Component where error occurred
        additional_info: Additional context information

    Returns:
        Error context dictionary
    """
    context = {
        "operation": operation,
        "component": component,
    }

    if additional_info:
        context.update(additional_info)

    return context
