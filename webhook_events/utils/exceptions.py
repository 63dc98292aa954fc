"""
Custom exception classes for the webhook event system.
"""

from typing import Any, Dict, Optional


class WebhookSystemException(Exception):
    """Base exception class for the webhook event system."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(WebhookSystemException):
    """Exception raised for malformed input."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        self.field = field
        super().__init__(message, error_code="VALIDATION_ERROR", **kwargs)


class NotFoundError(WebhookSystemException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found", **kwargs):
        super().__init__(message, error_code="NOT_FOUND", **kwargs)


class ConflictError(WebhookSystemException):
    """Exception raised when an operation conflicts with the resource state."""

    def __init__(self, message: str = "Resource conflict", **kwargs):
        super().__init__(message, error_code="CONFLICT", **kwargs)
