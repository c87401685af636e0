"""
Rate Lowry Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions, one per failure class.
How:   Each exception carries a client-safe `message` and a `context` dict
       that is logged but never returned verbatim for server-side failures.
       Global handlers in main.py map them to HTTP responses.

Exception Hierarchy:
    RateLowryError (base)
    ├── ValidationError           → 400 Bad Request
    ├── ForbiddenError            → 403 Forbidden
    ├── NotFoundError             → 404 Not Found
    ├── DatabaseError             → 500 Internal Server Error
    ├── FileStorageError          → 500 Internal Server Error
    ├── ImageHostError            → 503 Service Unavailable
    ├── CircuitBreakerOpenError   → 503 Service Unavailable
    ├── WriteBufferFullError      → 503 Service Unavailable
    └── WriteTimeoutError         → 503 Service Unavailable
"""

from typing import Any, Dict, Optional


class RateLowryError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(RateLowryError):
    """
    Raised when client input fails a business rule.

    When:    Missing review fields, rating outside 1-5, blank station name,
             bad upload type or size, malformed identifiers.
    HTTP:    400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "Rating must be between 1 and 5",
            "details": {"field": "rating"}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class ForbiddenError(RateLowryError):
    """Raised when an operation is disabled in the current environment (403)."""

    def __init__(
        self,
        message: str = "This endpoint is disabled in production",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(RateLowryError):
    """
    Raised when a requested resource does not exist (404).

    SQLAlchemy returns None for missing rows; services convert that into
    this exception so the handler can answer 404.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DatabaseError(RateLowryError):
    """
    Raised when a database operation fails unexpectedly (500).

    The client always gets a generic message; the original error type and
    any identifiers go into `context` for the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(RateLowryError):
    """Raised when staging an upload on local disk fails (500)."""

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ImageHostError(RateLowryError):
    """
    Raised when the image host refuses our credentials, is not configured,
    or stays unreachable after all retries (503).
    """

    def __init__(
        self,
        message: str = "Image hosting service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(RateLowryError):
    """
    Raised when the image host circuit breaker is OPEN (503).

    CLOSED → (threshold consecutive failures) → OPEN
    OPEN → (recovery timeout elapsed) → HALF_OPEN, one trial call
    HALF_OPEN → success → CLOSED, failure → OPEN
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            "Image hosting is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class WriteBufferFullError(RateLowryError):
    """Raised when the review write buffer is at capacity (503)."""

    def __init__(
        self,
        retry_after: int = 5,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = "The server is busy saving other reviews. Please try again shortly."
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class WriteTimeoutError(RateLowryError):
    """Raised when a buffered review is not flushed before its deadline (503)."""

    def __init__(
        self,
        timeout: float = 30.0,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = "Your review could not be saved in time. Please submit it again."
        ctx = context or {}
        ctx["timeout_seconds"] = timeout
        super().__init__(message=message, context=ctx)
        self.timeout = timeout
