"""Error bodies and the exception handlers that render them.

Every error response has the same flat body:
    {"message": "...", "code": "E_...", "request_id": "..."}

`message` names a failure category only. Exception text is logged, never
returned, so key-set URLs and token fragments stay server-side.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tokengate.errors import ERROR_CODE_TO_STATUS, ApiError, ApiErrorCode
from tokengate.logging import get_logger, get_request_id

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build an error body.

    Args:
        code: Error code placed in `code`.
        message: Failure category placed in `message`.
        request_id: Correlation ID; read from log context when omitted.

    Returns:
        The body dict. `request_id` is left out when none is known.
    """
    request_id = request_id or get_request_id()
    body: dict[str, Any] = {"message": message, "code": code.value}
    if request_id:
        body["request_id"] = request_id
    return body


def error_json_response(
    code: ApiErrorCode, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_CODE_TO_STATUS[code],
        content=error_response(code, message),
        headers=headers,
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return error_json_response(exc.code, exc.message, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors (404, 405, ...) in the shared error shape."""
    code = _STATUS_TO_CODE.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, str(exc.detail) if exc.detail else "An error occurred"),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the failure and answer 500 without any of its detail."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return error_json_response(ApiErrorCode.E_INTERNAL, "Internal server error")
