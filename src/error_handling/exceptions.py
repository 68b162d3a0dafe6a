"""
Custom Exception Classes for the event table reservation service.

This module defines exception classes for different error categories:
- Request Errors (validation, authentication, unknown resources)
- Reservation Errors (table conflicts, exhausted retries)
- Technical Errors (payment gateway, webhook verification, database, configuration)

Each exception includes context for error recovery and logging.
"""

from typing import Optional, Any, Dict, List


class BookingSystemError(Exception):
    """Base exception for all reservation system errors."""

    # Machine-readable code surfaced to API callers
    code = "internal"

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = True
    ):
        """
        Initialize reservation system error.

        Args:
            message: Technical error message for logging
            user_message: Caller-facing message
            context: Additional context for error recovery
            recoverable: Whether the caller can reasonably retry
        """
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.context = context or {}
        self.recoverable = recoverable


# ============================================================================
# Request Errors
# ============================================================================

class ValidationError(BookingSystemError):
    """
    Raised when a request is malformed or violates a business rule.

    Examples:
    - Missing restaurant, event or slot id
    - Party size below 1
    - Slot that belongs to a different event or restaurant
    - Unknown menu item in the line items
    """

    code = "invalid_argument"

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        context = {
            "field": field,
            "value": value,
            **kwargs
        }
        super().__init__(message, user_message, context, recoverable=True)
        self.field = field
        self.value = value


class AuthError(BookingSystemError):
    """Raised when there is no authenticated caller."""

    code = "unauthenticated"

    def __init__(self, message: str = "Login required", **kwargs):
        super().__init__(message, context=kwargs, recoverable=False)


class NotFoundError(BookingSystemError):
    """Raised when a slot, table or reservation does not exist."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: Any, **kwargs):
        message = f"{resource} not found: {resource_id}"
        context = {
            "resource": resource,
            "resource_id": resource_id,
            **kwargs
        }
        super().__init__(message, context=context, recoverable=False)
        self.resource = resource
        self.resource_id = resource_id


# ============================================================================
# Reservation Errors
# ============================================================================

class ConflictError(BookingSystemError):
    """
    Raised when a reservation cannot be committed.

    Examples:
    - Optimistic transaction retries exhausted
    - State transition not allowed (cancelling a confirmed reservation)
    """

    code = "conflict"

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs
    ):
        context = {
            "attempts": attempts,
            **kwargs
        }
        super().__init__(message, user_message, context, recoverable=True)
        self.attempts = attempts


class NoTablesAvailableError(ConflictError):
    """Raised when no single table or two-table combination fits the party."""

    code = "no_tables_available"

    def __init__(
        self,
        party_size: int,
        restaurant_id: Optional[str] = None,
        busy_table_ids: Optional[List[str]] = None,
        **kwargs
    ):
        message = f"No tables available for party_size={party_size}"
        super().__init__(
            message=message,
            user_message="No table or table combination is free for this party size.",
            party_size=party_size,
            restaurant_id=restaurant_id,
            busy_table_ids=sorted(busy_table_ids or []),
            **kwargs
        )
        self.party_size = party_size


# ============================================================================
# Technical Errors - Payment Gateway
# ============================================================================

class GatewayError(BookingSystemError):
    """
    Raised when the payment provider call fails.

    Examples:
    - Network timeout creating a payment intent
    - Provider rejected the request
    - Authentication with the provider failed
    """

    code = "gateway_error"

    def __init__(
        self,
        message: str,
        provider: str = "stripe",
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        context = {
            "provider": provider,
            "operation": operation,
            "original_error": str(original_error) if original_error else None,
            **kwargs
        }
        super().__init__(
            message,
            user_message="The payment provider is unavailable. Please try again.",
            context=context,
            recoverable=True
        )
        self.provider = provider
        self.operation = operation
        self.original_error = original_error


class WebhookVerificationError(BookingSystemError):
    """Raised when a webhook payload fails signature verification."""

    code = "webhook_verification_failed"

    def __init__(self, message: str, original_error: Optional[Exception] = None, **kwargs):
        context = {
            "original_error": str(original_error) if original_error else None,
            **kwargs
        }
        super().__init__(message, context=context, recoverable=False)
        self.original_error = original_error


# ============================================================================
# Technical Errors - Database
# ============================================================================

class DatabaseError(BookingSystemError):
    """
    Raised when database operations fail.

    Examples:
    - Connection errors
    - Query failures
    - Transaction errors
    """

    code = "database_error"

    def __init__(
        self,
        message: str,
        error_type: str = "unknown",
        original_error: Optional[Exception] = None,
        retry_possible: bool = True,
        **kwargs
    ):
        """
        Initialize database error.

        Args:
            message: Error message
            error_type: Type of error (connection, query, constraint)
            original_error: Original exception
            retry_possible: Whether retry is possible
            **kwargs: Additional context
        """
        context = {
            "error_type": error_type,
            "original_error": str(original_error) if original_error else None,
            "retry_possible": retry_possible,
            **kwargs
        }
        super().__init__(message, context=context, recoverable=retry_possible)
        self.error_type = error_type
        self.original_error = original_error
        self.retry_possible = retry_possible


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            error_type="connection",
            retry_possible=True,
            **kwargs
        )


# ============================================================================
# System Errors
# ============================================================================

class ConfigurationError(BookingSystemError):
    """Raised when a required setting (API key, webhook secret) is missing."""

    code = "configuration_error"

    def __init__(self, setting: str, **kwargs):
        message = f"missing_{setting}"
        context = {"setting": setting, **kwargs}
        super().__init__(
            message,
            user_message="The service is not configured correctly.",
            context=context,
            recoverable=False
        )
        self.setting = setting
