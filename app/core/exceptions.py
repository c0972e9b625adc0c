"""
Custom exception classes for the Rescue App backend.

This module defines all custom exceptions used throughout the application.
Each exception carries an HTTP status so the handlers in ``app.main`` can
render the canonical ``{"error": {"code": ..., "message": ...}}`` body.
"""

from http import HTTPStatus
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class RescueAppException(Exception):
    """Base exception class for all Rescue App exceptions."""

    def __init__(
        self,
        message: str = "An error occurred in Rescue App",
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        # Not super(): in APIException's MRO the next class is HTTPException,
        # whose first positional argument is the status code.
        Exception.__init__(self, self.message)


# API/HTTP Exceptions
class APIException(RescueAppException, HTTPException):
    """Base HTTP exception for API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        RescueAppException.__init__(self, message, error_code, details)
        HTTPException.__init__(self, status_code, message, headers)


class ValidationError(APIException):
    """Raised when request data fails validation."""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if field and details is None:
            details = {"field": field}
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            details=details
        )


class NotFoundError(APIException):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        resource: str,
        identifier: Optional[Any] = None,
        message: Optional[str] = None
    ):
        if message is None:
            message = f"{resource} not found"
            if identifier is not None:
                message += f" (ID: {identifier})"

        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier) if identifier is not None else None}
        )


class PermissionDeniedError(APIException):
    """Raised when a user lacks permission for an operation."""

    def __init__(
        self,
        message: str = "Permission denied.",
        required_roles: Optional[list[str]] = None,
        resource: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if required_roles:
            details["required_roles"] = required_roles
        if resource:
            details["resource"] = resource

        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED",
            details=details
        )


class AuthenticationError(APIException):
    """Raised when the bearer token is missing or invalid."""

    def __init__(self, message: str = "Invalid or missing token."):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTHENTICATION_REQUIRED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ConflictError(APIException):
    """Raised when an operation conflicts with the current state of a resource."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="STATE_CONFLICT",
            details=details
        )


# Business Logic Exceptions
class InvalidStatusTransitionError(APIException):
    """Raised when an animal's adoption status does not allow an operation."""

    def __init__(
        self,
        current_status: str,
        operation: str,
        message: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST
    ):
        if message is None:
            message = f"Cannot {operation} an animal with status '{current_status}'."

        super().__init__(
            message=message,
            status_code=status_code,
            error_code="INVALID_STATUS_TRANSITION",
            details={
                "current_status": current_status,
                "operation": operation
            }
        )


# External Service Exceptions
class ExternalServiceError(APIException):
    """Base exception for downstream service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE,
        response_data: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={
                "service": service_name,
                "response_data": response_data
            }
        )
        self.service_name = service_name


class StorageError(ExternalServiceError):
    """Raised when object storage calls fail."""

    def __init__(self, message: str = "Storage service is unavailable.", operation: Optional[str] = None):
        super().__init__(service_name="Blob Storage", message=message)
        if operation:
            self.details["operation"] = operation


class EmailDeliveryError(ExternalServiceError):
    """Raised when an email cannot be handed to the SMTP server."""

    def __init__(self, message: str = "Email service is unavailable.", recipient: Optional[str] = None):
        super().__init__(service_name="SMTP", message=message)
        if recipient:
            self.details["recipient"] = recipient


# Configuration Exceptions
class ConfigurationError(APIException):
    """Raised when the service is misconfigured."""

    def __init__(self, setting_name: str, message: Optional[str] = None):
        if message is None:
            message = f"Configuration error: {setting_name} is not set"

        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="CONFIGURATION_ERROR",
            details={"setting": setting_name}
        )


# Utility functions for exception handling
def status_code_name(status_code: int) -> str:
    """Machine-readable status name, e.g. 404 -> ``NotFound``."""
    try:
        return HTTPStatus(status_code).phrase.replace(" ", "").replace("-", "")
    except ValueError:
        return "Error"


def error_body(status_code: int, message: str) -> Dict[str, Any]:
    """Build the JSON error payload returned by every endpoint."""
    return {"error": {"code": status_code_name(status_code), "message": message}}


def format_exception_for_logging(exc: Exception) -> Dict[str, Any]:
    """Format exception for structured logging."""
    data = {
        "exception_type": exc.__class__.__name__,
        "message": str(exc)
    }

    if isinstance(exc, RescueAppException):
        data["error_code"] = exc.error_code
        data["details"] = exc.details

    if isinstance(exc, APIException):
        data["status_code"] = exc.status_code
        if exc.headers:
            data["headers"] = exc.headers

    return data
