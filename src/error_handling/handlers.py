"""
Centralized error handling utilities for the reservation service.

This module provides utilities for:
- Error logging with context and severity
- Mapping errors to HTTP status codes and response bodies
- Translating SQLAlchemy connection and constraint failures into service errors
"""
import functools
from typing import Optional, Callable, Any, Dict

from loguru import logger
from sqlalchemy.exc import IntegrityError, OperationalError, DisconnectionError

from .exceptions import (
    BookingSystemError,
    ValidationError,
    AuthError,
    NotFoundError,
    ConflictError,
    GatewayError,
    WebhookVerificationError,
    DatabaseError,
    DatabaseConnectionError,
    ConfigurationError,
)


# First match wins, so subclasses must precede their bases
ERROR_STATUS_CODES = [
    (ValidationError, 400),
    (WebhookVerificationError, 400),
    (AuthError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
    (GatewayError, 502),
    (DatabaseConnectionError, 503),
    (DatabaseError, 500),
    (ConfigurationError, 500),
]


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for an exception.

    Args:
        error: Exception raised by a service

    Returns:
        HTTP status code (500 for anything unrecognised)
    """
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


def error_response(error: Exception) -> Dict[str, Any]:
    """
    Build the JSON body returned to API callers.

    Args:
        error: Exception raised by a service

    Returns:
        Dictionary with error code and caller-facing message
    """
    if isinstance(error, BookingSystemError):
        return {"error": error.code, "message": error.user_message}
    return {"error": "internal", "message": "Internal server error"}


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    severity: Optional[str] = None
) -> None:
    """
    Log error with full context.

    Severity defaults by category: configuration errors are CRITICAL,
    caller mistakes and conflicts are WARNING, everything else is ERROR.

    Args:
        error: Exception that occurred
        context: Additional context information
        severity: Explicit log level overriding the default
    """
    if severity is None:
        if isinstance(error, ConfigurationError):
            severity = "CRITICAL"
        elif isinstance(error, (ValidationError, AuthError, NotFoundError, ConflictError, WebhookVerificationError)):
            severity = "WARNING"
        else:
            severity = "ERROR"

    details = dict(context or {})
    if isinstance(error, BookingSystemError):
        details.update(error.context)

    logger.bind(category="ERROR").log(
        severity,
        f"{type(error).__name__}: {error} | context={details}"
    )

    # Stack trace only for technical errors
    if severity in ("ERROR", "CRITICAL") and error.__traceback__ is not None:
        logger.opt(exception=error).debug("Stack trace:")


def handle_database_errors(operation: str) -> Callable:
    """
    Decorator for service methods that talk to the database.

    Rolls back the service session and converts SQLAlchemy connection
    failures into DatabaseConnectionError and constraint violations into a
    non-retryable DatabaseError. Service errors pass through.

    Args:
        operation: Operation name recorded in the error context

    Returns:
        Decorated method
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except BookingSystemError:
                self.session.rollback()
                raise
            except (OperationalError, DisconnectionError) as e:
                self.session.rollback()
                raise DatabaseConnectionError(
                    f"Database operation failed: {str(e)}",
                    operation=operation,
                    original_error=e
                )
            except IntegrityError as e:
                self.session.rollback()
                raise DatabaseError(
                    f"Constraint violated during {operation}: {e.orig}",
                    error_type="constraint",
                    original_error=e,
                    retry_possible=False,
                    operation=operation
                )
        return wrapper
    return decorator
