"""Error handling module for the gift instance manager.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "success": false,
    "message": "Instance not found",
    "error": {
        "code": "INSTANCE_NOT_FOUND",
        "message": "Instance not found"
    }
}

Usage:
    from giftmgr.core.errors import InstanceNotFoundError, ConflictError

    # Raise with default message
    raise InstanceNotFoundError()

    # Raise naming the colliding instance
    raise ConflictError("Port 3000 is already in use by instance: a", instance_name="a")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    CONTAINER_NOT_FOUND = "CONTAINER_NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    PORTS_EXHAUSTED = "PORTS_EXHAUSTED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# HTTP status per error code, used when a failed OperationResult is rendered.
ERROR_STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INSTANCE_NOT_FOUND: 404,
    ErrorCode.CONTAINER_NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.PRECONDITION_FAILED: 409,
    ErrorCode.RUNTIME_ERROR: 502,
    ErrorCode.PORTS_EXHAUSTED: 409,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for(code: ErrorCode | None) -> int:
    """HTTP status code for an error code (500 when unknown)."""
    if code is None:
        return 500
    return ERROR_STATUS_CODES.get(code, 500)


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response envelope."""

    success: bool = False
    message: str
    error: ErrorDetail


class GiftMgrError(Exception):
    """Base exception for the gift instance manager.

    All domain exceptions inherit from this class so that FastAPI and the
    lifecycle orchestrator can handle them in one place.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code to return
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            message=self.message,
            error=ErrorDetail(code=self.code.value, message=self.message),
        )


class UnauthorizedError(GiftMgrError):
    """401 Unauthorized - Missing or invalid API token."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class InstanceNotFoundError(GiftMgrError):
    """404 Not Found - No instance record with the given identifier."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class ContainerNotFoundError(GiftMgrError):
    """404 Not Found - The runtime has no container for the reference."""

    def __init__(self, message: str = "Container not found") -> None:
        super().__init__(ErrorCode.CONTAINER_NOT_FOUND, message, 404)


class ConflictError(GiftMgrError):
    """409 Conflict - Name or port already taken by another instance."""

    def __init__(
        self,
        message: str = "Instance already exists",
        instance_name: str | None = None,
        instance_id: str | None = None,
    ) -> None:
        self.instance_name = instance_name
        self.instance_id = instance_id
        super().__init__(ErrorCode.CONFLICT, message, 409)


class ValidationFailedError(GiftMgrError):
    """400 Bad Request - Input failed domain validation."""

    def __init__(self, message: str = "Invalid input") -> None:
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 400)


class PreconditionFailedError(GiftMgrError):
    """409 Conflict - Operation not allowed in the current state."""

    def __init__(self, message: str = "Operation not allowed in current state") -> None:
        super().__init__(ErrorCode.PRECONDITION_FAILED, message, 409)


class ContainerRuntimeError(GiftMgrError):
    """502 Bad Gateway - Container runtime call failed."""

    def __init__(self, message: str = "Container runtime error") -> None:
        super().__init__(ErrorCode.RUNTIME_ERROR, message, 502)


class PortsExhaustedError(GiftMgrError):
    """409 Conflict - No free port left in the configured range."""

    def __init__(self, message: str = "No available ports in range") -> None:
        super().__init__(ErrorCode.PORTS_EXHAUSTED, message, 409)
