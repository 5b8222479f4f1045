"""
Shared error handling for the Incidents service.

Core operations raise these exceptions; the HTTP layer renders them through a
single handler using ``status_code`` and ``to_response()``.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ServiceException(Exception):
    """Base exception for the Incidents service."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def is_fault(self) -> bool:
        """Whether this error indicates a failure on our side (5xx)."""
        return self.status_code >= 500

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ServiceException):
    """Bad or missing input."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(ServiceException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, code: str = "AUTHENTICATION_ERROR", message: str = "Authentication failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class MissingToken(AuthenticationError):
    """No access token was presented."""

    status_code = 401

    def __init__(self, message: str = "Access token required"):
        super().__init__("MISSING_TOKEN", message)


class InvalidToken(AuthenticationError):
    """Token signature is invalid, the token is malformed or it has expired."""

    status_code = 403

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__("INVALID_TOKEN", message)


class InvalidCredentials(AuthenticationError):
    """Unknown username or wrong password."""

    status_code = 401

    def __init__(self, message: str = "Invalid credentials."):
        super().__init__("INVALID_CREDENTIALS", message)


class DuplicateUsername(ServiceException):
    """Username is already registered."""

    status_code = 409

    def __init__(self, username: str):
        super().__init__("DUPLICATE_USERNAME", "Username already exists.", {"username": username})


class NotFound(ServiceException):
    """No matching record."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class InternalError(ServiceException):
    """Internal failure; detail is logged, never returned to the caller."""

    status_code = 500

    def __init__(self, code: str = "INTERNAL_ERROR", message: str = "Internal server error",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            request_id=get_request_id(),
            code="INTERNAL_ERROR",
            message="Internal server error",
        )


class ExternalServiceError(InternalError):
    """Communication failure with a backing service (store or cache)."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class CacheError(ExternalServiceError):
    """Cache Layer communication failure."""

    def __init__(self, message: str = "Cache unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("redis", message, details)
