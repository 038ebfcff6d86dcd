"""
Consolidated exception system with error codes, context, and correlation support.

This module provides the exception hierarchy for the OTP core. Every error
carries a standardized error code, an HTTP-ish status code for the API layer
that consumes this library, and a context dictionary. Errors log themselves
on construction at a level derived from their status code.
"""

import threading
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

_thread_local = threading.local()


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # System errors (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Validation errors (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    TYPE_MISMATCH = "2003"

    # Resource errors (3xxx)
    NOT_FOUND = "3000"
    CONFLICT = "3002"
    EXPIRED = "3004"

    # Credential errors (6xxx)
    TOKEN_VALIDATION_FAILED = "6000"
    CORRUPT_CREDENTIAL = "6001"


class BaseError(Exception):
    """Base exception with context, error codes, logging, and error chaining."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        """
        Initialize base error with rich context.

        Args:
            message: Human-readable error message
            error_code: Standardized error code from ErrorCode enum
            status_code: HTTP status code for API responses
            cause: Original exception that caused this error
            **context: Additional context information
        """
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_id = str(uuid.uuid4())
        self.context = context

        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self.context["error_id"] = self.error_id

        if cause:
            self.context["cause"] = {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": traceback.format_exception(type(cause), cause, cause.__traceback__),
            }

        self._log_error()

        super().__init__(message)

    def _log_data(self) -> Dict[str, Any]:
        log_data = {
            "error_id": self.error_id,
            "error_code": self.error_code.value,
            "status_code": self.status_code,
            "error_message": self.message,
            "timestamp": self.timestamp,
            "context": {k: v for k, v in self.context.items() if k not in ["cause", "traceback"]},
        }
        if "correlation_id" in self.context:
            log_data["correlation_id"] = self.context["correlation_id"]
        return log_data

    def _log_error(self) -> None:
        """Log error with appropriate level based on status code."""
        # Lazy import: the logger module imports config, which must not import us back
        from .utils.logger import get_logger

        logger = get_logger()
        log_data = self._log_data()

        if self.status_code >= 500:
            logger.error(
                f"Error {self.error_code}: {self.message}", extra=log_data, exc_info=self.cause
            )
        elif self.status_code >= 400:
            logger.warning(f"Client error {self.error_code}: {self.message}", extra=log_data)
        else:
            logger.info(f"Error {self.error_code}: {self.message}", extra=log_data)

    def to_dict(
        self, include_cause: bool = False, include_traceback: bool = False
    ) -> Dict[str, Any]:
        """
        Convert to dict for API responses.

        Args:
            include_cause: Include cause information (useful for debugging)
            include_traceback: Include full traceback (only in debug mode)

        Returns:
            Dictionary representation suitable for JSON serialization
        """
        result: Dict[str, Any] = {
            "error": {
                "id": self.error_id,
                "code": self.error_code.value,
                "message": self.message,
                "timestamp": self.timestamp,
                "context": {
                    k: v
                    for k, v in self.context.items()
                    if k not in ["cause", "error_id", "correlation_id"]
                },
            }
        }

        if "correlation_id" in self.context:
            result["error"]["correlation_id"] = self.context["correlation_id"]

        if include_cause and "cause" in self.context:
            result["error"]["cause"] = {
                "type": self.context["cause"]["type"],
                "message": self.context["cause"]["message"],
            }
            if include_traceback:
                result["error"]["cause"]["traceback"] = self.context["cause"]["traceback"]

        return result

    def add_context(self, **kwargs: Any) -> "BaseError":
        """
        Add additional context to the error (fluent interface).

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[Exception]:
        """Get the full chain of errors."""
        chain: List[Exception] = [self]
        current = self.cause
        while current:
            chain.append(current)
            current = getattr(current, "cause", None)
        return chain


# Layer-specific base exceptions
class RepositoryError(BaseError):
    """Repository layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        """Initialize repository error with database context."""
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Service layer errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        """Initialize service error with operation context."""
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        """Initialize validation error with field context."""
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


# ==================== OTP-SPECIFIC EXCEPTIONS ====================


class ValidationInputError(ValidationError):
    """Raised when a tenant, identity or OTP has the wrong shape."""

    def __init__(self, message: str = "Invalid OTP request", **kwargs):
        kwargs.setdefault("error_code", ErrorCode.INVALID_FORMAT)
        super().__init__(message, **kwargs)


class TokenValidationFailedError(BaseError):
    """
    Raised when no active token matches the submitted OTP.

    The message is the same whether the identity has no pending token, the OTP
    was wrong, or a concurrent validator won the race.
    """

    MESSAGE = "OTP validation failed"

    def __init__(self, cause: Optional[Exception] = None, **kwargs):
        super().__init__(
            message=self.MESSAGE,
            error_code=ErrorCode.TOKEN_VALIDATION_FAILED,
            status_code=401,
            cause=cause,
            **kwargs,
        )

    def _log_error(self) -> None:
        # A wrong or stale OTP is an expected outcome, not an incident
        from .utils.logger import get_logger

        get_logger().info(f"Error {self.error_code}: {self.message}", extra=self._log_data())


class TokenUpdateFailedError(RepositoryError):
    """Raised when a conditional token update matched no row."""

    def __init__(self, message: str = "Token update matched no rows", **kwargs):
        super().__init__(message, error_code=ErrorCode.CONFLICT, status_code=409, **kwargs)


class TokenNotFoundError(RepositoryError):
    """Raised when an operation targets a token id that does not exist."""

    def __init__(self, message: str = "Token not found", **kwargs):
        super().__init__(message, error_code=ErrorCode.NOT_FOUND, status_code=404, **kwargs)


class StoreUnavailableError(RepositoryError):
    """Raised when the token store cannot be reached or the statement failed or timed out."""

    def __init__(
        self,
        message: str = "Token store unavailable",
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        **kwargs,
    ):
        super().__init__(message, error_code=error_code, status_code=503, **kwargs)


class CorruptCredentialError(BaseError):
    """Raised when a stored OTP secret is not in the format the hasher expects."""

    def __init__(self, message: str = "Stored OTP secret is malformed", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.CORRUPT_CREDENTIAL, status_code=500, **kwargs
        )


# Factory functions for common error patterns
def not_found(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> TokenNotFoundError:
    """
    Factory for not found errors.

    Args:
        resource_type: Type of resource (e.g., 'OTPToken')
        cause: Original exception if any
        **identifiers: Resource identifiers (e.g., token_id='123')

    Returns:
        Configured TokenNotFoundError instance with 404 status
    """
    id_parts = [f"{k}={v}" for k, v in identifiers.items()]
    message = f"{resource_type} not found"
    if id_parts:
        message += f": {', '.join(id_parts)}"

    return TokenNotFoundError(
        message,
        cause=cause,
        resource_type=resource_type,
        **identifiers,
    )


def validation_failed(
    field: str, value: Any, reason: str, cause: Optional[Exception] = None
) -> ValidationInputError:
    """
    Factory for input validation errors.

    Args:
        field: Field that failed validation
        value: The invalid value
        reason: Why validation failed
        cause: Original exception if any

    Returns:
        Configured ValidationInputError instance
    """
    return ValidationInputError(
        f"Validation failed for {field}: {reason}",
        field=field,
        cause=cause,
        value=str(value),
        reason=reason,
    )


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
