# core/exceptions.py
"""Define standardized exception types for the coordination layer.

Errors raised by fetch collaborators (network failures, HTTP status errors) are never
wrapped: they propagate unchanged to every waiter. The types below cover the conditions
this layer produces on its own.
"""

from typing import Any


class CoordinationError(Exception):
    """Base exception for all coordination-layer errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class CascadeDetectedError(CoordinationError):
    """Raised for a new request attempt rejected during a request storm.

    In-flight requests for the same fingerprint are unaffected.
    """


class RateLimitExceededError(CoordinationError):
    """Raised when a caller turns an admission denial into a rejected request."""


class BatchItemNotFoundError(CoordinationError, KeyError):
    """Raised for a batched item whose key is absent from the batch result map."""

    def __str__(self) -> str:
        return CoordinationError.__str__(self)


class StorageError(CoordinationError):
    """Errors related to loading or persisting behaviour history."""


def create_error_context(**kwargs: Any) -> dict[str, Any]:
    """Build a context dictionary for structured errors.

    Returns:
        A dictionary containing only keys whose values are not `None`.
    """
    return {k: v for k, v in kwargs.items() if v is not None}


def handle_storage_error(operation: str, original_error: Exception, **context: Any) -> StorageError:
    """Convert a KV-store failure into a `StorageError` carrying structured context."""
    error_details = create_error_context(
        operation=operation,
        original_error=str(original_error),
        error_type=type(original_error).__name__,
        **context,
    )
    return StorageError(f"Storage failure during {operation}", details=error_details)
