"""Operation result types for lifecycle and monitoring calls."""

from typing import Any

from pydantic import BaseModel

from giftmgr.core.errors import ErrorCode, GiftMgrError


class OperationResult(BaseModel):
    """Tagged outcome of a lifecycle operation.

    Lifecycle calls never raise domain errors past their boundary;
    callers branch on `success` and render `message` to the user.
    """

    success: bool
    message: str = ""
    error_code: ErrorCode | None = None
    data: Any = None

    @classmethod
    def ok(cls, message: str = "", data: Any = None) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(
        cls, message: str, error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    ) -> "OperationResult":
        return cls(success=False, message=message, error_code=error_code)

    @classmethod
    def from_error(cls, exc: GiftMgrError) -> "OperationResult":
        return cls(success=False, message=exc.message, error_code=exc.code)


class BulkResult(BaseModel):
    """Outcome of a bulk start/stop fan-out."""

    success: bool = True
    message: str
    succeeded: int
    attempted: int
    results: list[OperationResult] = []
