"""Conversion of service results to HTTP responses."""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from promptvault.service.admin import OperationResult


def respond(result: OperationResult) -> JSONResponse:
    response = JSONResponse(status_code=result.http_status, content=result.to_envelope())
    if not result.success and result.details:
        retry_after = result.details.get("retry_after_seconds")
        if retry_after is not None:
            response.headers["Retry-After"] = str(retry_after)
    return response


def success(data: Any, *, request_id: str | None, http_status: int = 200) -> JSONResponse:
    return respond(OperationResult.ok(data, http_status=http_status, request_id=request_id))
