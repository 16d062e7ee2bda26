"""Response envelope: {"success": bool, "message": str, "data": ...}."""

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from giftmgr.core.errors import status_for
from giftmgr.core.models import Instance
from giftmgr.core.result import BulkResult, OperationResult
from giftmgr.services.notifier import serialize_instance


def _public(data: Any) -> Any:
    if isinstance(data, Instance):
        return serialize_instance(data)
    if isinstance(data, list):
        return [_public(item) for item in data]
    return data


def result_response(result: OperationResult, status_code: int = 200) -> JSONResponse:
    """Render an OperationResult; failures get the status of their error code."""
    if result.success:
        return JSONResponse(
            status_code=status_code,
            content=jsonable_encoder({
                "success": True,
                "message": result.message,
                "data": _public(result.data),
            }),
        )

    content: dict[str, Any] = {"success": False, "message": result.message}
    if result.error_code is not None:
        content["error"] = {"code": result.error_code.value, "message": result.message}
    if result.data is not None:
        content["data"] = jsonable_encoder(_public(result.data))
    return JSONResponse(
        status_code=status_for(result.error_code) if result.error_code else 503,
        content=content,
    )


def bulk_response(result: BulkResult) -> JSONResponse:
    return JSONResponse(
        status_code=200 if result.success else 500,
        content=jsonable_encoder({
            "success": result.success,
            "message": result.message,
            "data": {
                "succeeded": result.succeeded,
                "attempted": result.attempted,
                "results": [
                    {"success": r.success, "message": r.message} for r in result.results
                ],
            },
        }),
    )


def data_response(data: Any, message: str = "") -> JSONResponse:
    return JSONResponse(
        content=jsonable_encoder({"success": True, "message": message, "data": data})
    )
