from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from ctxfetch.tools.fetch import STATUS_TRANSPORT_ERROR, FetchOutcome
from ctxfetch.utils.cancel import CAUSE_CANCELLED, CAUSE_DEADLINE_EXCEEDED


logger = logging.getLogger(__name__)

# Client went away before the response was ready (nginx convention).
HTTP_CLIENT_CLOSED_REQUEST = 499

_OUTCOME_ERRORS: dict[str, tuple[int, str]] = {
    STATUS_TRANSPORT_ERROR: (502, "bad_gateway"),
    CAUSE_DEADLINE_EXCEEDED: (504, "deadline_exceeded"),
    CAUSE_CANCELLED: (HTTP_CLIENT_CLOSED_REQUEST, "cancelled"),
}


@dataclass
class APIError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def error_response(*, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=int(status_code), content=payload)


def api_error_from_outcome(outcome: FetchOutcome) -> APIError:
    status_code, code = _OUTCOME_ERRORS.get(outcome.status, (500, "internal"))
    return APIError(
        status_code=status_code,
        code=code,
        message=outcome.error or code,
        details={"elapsed_s": outcome.elapsed_s},
    )


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return error_response(
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    # Normalize Pydantic validation errors into our contract envelope.
    return error_response(
        status_code=400,
        code="invalid_argument",
        message="Request validation failed.",
        details={"errors": exc.errors()},
    )


async def unhandled_error_handler(req: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", req.method, req.url.path, exc_info=exc)
    return error_response(
        status_code=500,
        code="internal",
        message="Internal server error.",
        details={"type": type(exc).__name__},
    )
