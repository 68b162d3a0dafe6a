"""
Error handling module for the event table reservation service.

Main Components:
    - exceptions: Custom exception classes for all error scenarios
    - handlers: Logging, HTTP mapping and database error translation
    - logging_config: loguru setup and audit-trail helpers
"""

from .exceptions import (
    # Base exception
    BookingSystemError,

    # Request errors
    ValidationError,
    AuthError,
    NotFoundError,

    # Reservation errors
    ConflictError,
    NoTablesAvailableError,

    # Technical errors
    GatewayError,
    WebhookVerificationError,
    DatabaseError,
    DatabaseConnectionError,
    ConfigurationError,
)

from .handlers import (
    get_status_code,
    error_response,
    log_error,
    handle_database_errors,
)

from .logging_config import (
    configure_logging,
    init_logging,
    log_reservation_event,
    log_api_call,
    log_performance,
)

__all__ = [
    "BookingSystemError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "ConflictError",
    "NoTablesAvailableError",
    "GatewayError",
    "WebhookVerificationError",
    "DatabaseError",
    "DatabaseConnectionError",
    "ConfigurationError",
    "get_status_code",
    "error_response",
    "log_error",
    "handle_database_errors",
    "configure_logging",
    "init_logging",
    "log_reservation_event",
    "log_api_call",
    "log_performance",
]
