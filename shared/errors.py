"""
Shared error handling for the Airflow Access Gateway.

Every error raised on purpose by the gateway derives from
``AccessLayerException`` and carries the HTTP status it is rendered with.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Missing, invalid, expired or malformed credentials."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class MalformedTokenError(AuthenticationError):
    """Token could not be parsed."""

    reason = "malformed"

    def __init__(self, message: str = "Malformed token"):
        super().__init__(message)


class SignatureMismatchError(AuthenticationError):
    """Token signature does not verify against the configured secret."""

    reason = "signature_mismatch"

    def __init__(self, message: str = "Token signature mismatch"):
        super().__init__(message)


class TokenExpiredError(AuthenticationError):
    """Token is past its expiry."""

    reason = "expired"

    def __init__(self, message: str = "Token expired"):
        super().__init__(message)


class AuthorizationError(AccessLayerException):
    """Authenticated principal lacks the required role."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class BadRequestError(AccessLayerException):
    """Local validation failure or downstream 400."""

    status_code = 400

    def __init__(self, message: str = "Bad request", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_REQUEST", message, details)


class NotFoundError(AccessLayerException):
    """Requested resource does not exist."""

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ConflictError(AccessLayerException):
    """Resource state conflicts with the request."""

    status_code = 409

    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, details)


class UpstreamServerError(AccessLayerException):
    """Downstream answered with a 5xx status."""

    def __init__(self, service: str, message: str = "Upstream server error",
                 details: Optional[Dict[str, Any]] = None, upstream_status: int = 500):
        status_code = 503 if upstream_status == 503 else 502
        super().__init__("UPSTREAM_SERVER_ERROR", f"{service}: {message}", details, status_code)


class ExternalServiceError(AccessLayerException):
    """Downstream answered with an unmapped non-2xx status, passed through as-is."""

    def __init__(self, service: str, message: str = "External service error",
                 details: Optional[Dict[str, Any]] = None, upstream_status: int = 502):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details, upstream_status)


class ConnectivityError(AccessLayerException):
    """No response was received from downstream."""

    status_code = 504

    def __init__(self, service: str, message: str = "No response received",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("CONNECTIVITY_ERROR", f"{service}: {message}", details)


class ClientDisconnectedError(AccessLayerException):
    """Caller went away before the response was ready."""

    status_code = 499

    def __init__(self, message: str = "Client closed request"):
        super().__init__("CLIENT_CLOSED_REQUEST", message)


class InternalError(AccessLayerException):
    """Anything unexpected. Never carries the original message."""

    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__("INTERNAL_ERROR", message)
