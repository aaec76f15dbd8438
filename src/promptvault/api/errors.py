"""PromptVault API error handling.

Every failure leaves the API in the same envelope:

    {"success": false, "code": ..., "message": ..., "details": ..., "request_id": ...}

Global exception handlers:
- PromptVaultError: Component errors with their own code and status
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Malformed requests (400 VALIDATION_ERROR)
- Exception: Catch-all for unhandled exceptions (fail closed, no stack traces)
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from promptvault.api.middleware.request_id import REQUEST_ID_HEADER
from promptvault.errors import PromptVaultError

logger = logging.getLogger(__name__)

HTTP_STATUS_TO_CODE: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def get_request_id(request: Request) -> str:
    """Request id set by RequestIdMiddleware, falling back to the header or a new id."""
    request_id: str | None = getattr(request.state, "request_id", None)
    if request_id is not None:
        return str(request_id)
    header_id = request.headers.get(REQUEST_ID_HEADER)
    if header_id:
        return header_id
    return str(uuid.uuid4())


def make_error_response(
    request: Request,
    *,
    code: str,
    message: str,
    http_status: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build the error envelope response with X-Request-Id (and Retry-After if known)."""
    request_id = get_request_id(request)
    body: dict[str, Any] = {
        "success": False,
        "code": code,
        "message": message,
        "details": details,
        "request_id": request_id,
    }
    response = JSONResponse(status_code=http_status, content=body)
    response.headers[REQUEST_ID_HEADER] = request_id
    if details and details.get("retry_after_seconds") is not None:
        response.headers["Retry-After"] = str(details["retry_after_seconds"])
    return response


async def promptvault_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, PromptVaultError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.http_status,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map standard HTTP exceptions to the error envelope."""
    assert isinstance(exc, HTTPException)

    return make_error_response(
        request,
        code=HTTP_STATUS_TO_CODE.get(exc.status_code, "ERROR"),
        message=str(exc.detail) if exc.detail else f"HTTP {exc.status_code}",
        http_status=exc.status_code,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map pydantic request validation errors to 400 VALIDATION_ERROR.

    Only field paths and messages are returned, never the submitted values.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="VALIDATION_ERROR",
        message="Request validation failed",
        http_status=400,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fail closed: 500 with a generic message, details only in the log."""
    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": getattr(request.state, "request_id", None)},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
    )
