"""Response envelopes and the exception handlers that produce them.

Success bodies are {"data": ...}. Every failure, whether raised by a store,
rejected by the auth middleware or caught as a crash, is rendered as
{"error": {"code", "message", "request_id"?}} with the status its code maps to.

Two statuses carry headers clients act on: 401 advertises the bearer scheme so
the client re-authenticates, and 503 (storage or identity provider down) sets
Retry-After since those outages are transient.
"""

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from teamcoach.errors import ERROR_CODE_TO_STATUS, ApiError, ApiErrorCode
from teamcoach.logging import get_logger, get_request_id

logger = get_logger(__name__)

RETRY_AFTER_SECONDS = 5

# Framework-raised HTTP errors (unknown route, wrong method) have no ApiErrorCode
_HTTP_STATUS_CODES = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    413: ApiErrorCode.E_PAYLOAD_TOO_LARGE,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build the error envelope; request_id defaults to the current request's."""
    request_id = request_id or get_request_id()
    error = {"code": code.value, "message": message}
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _headers_for(status_code: int) -> dict[str, str] | None:
    if status_code == 401:
        return {"WWW-Authenticate": "Bearer"}
    if status_code == 503:
        return {"Retry-After": str(RETRY_AFTER_SECONDS)}
    return None


def error_json(code: ApiErrorCode, message: str, status_code: int | None = None) -> JSONResponse:
    """Render an error envelope as a response, status derived from the code."""
    status_code = status_code or ERROR_CODE_TO_STATUS.get(code, 500)
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message),
        headers=_headers_for(status_code),
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    # ("body", "top_strengths", 0) -> "top_strengths.0"
    location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
    if location:
        return f"Invalid request body: {location}"
    return "Invalid request body"


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("api_error", code=exc.code.value, status_code=exc.status_code)
    return error_json(exc.code, exc.message, exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body or parameter validation failures are 400, naming the first bad field."""
    return error_json(ApiErrorCode.E_INVALID_REQUEST, _describe_validation_error(exc), 400)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return error_json(code, message, exc.status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with E_INTERNAL. The exception is logged, never echoed to the client."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return error_json(ApiErrorCode.E_INTERNAL, "Internal server error", 500)
