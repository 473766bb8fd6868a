"""Response envelope, request correlation and error translation for the HTTP layer."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import IdentityError

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def request_id(request: Request) -> str:
    """Return the correlation id for the current request, assigning one on first use."""
    existing = getattr(request.state, "request_id", None)
    if existing:
        return existing
    value = request.headers.get(REQUEST_ID_HEADER) or f"req_{uuid.uuid4().hex}"
    request.state.request_id = value
    return value


def meta(request: Request) -> dict[str, str]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id(request),
    }


def success(request: Request, data: Any, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": jsonable_encoder(data), "meta": meta(request)},
        headers={REQUEST_ID_HEADER: request_id(request)},
    )


def failure(request: Request, status_code: int, error: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "meta": meta(request)},
        headers={REQUEST_ID_HEADER: request_id(request)},
    )


async def _identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request %s failed: %s", request_id(request), exc.code)
    return failure(request, exc.status_code, exc.to_payload())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
            "code": "INVALID_FORMAT",
        }
        for error in exc.errors()
    ]
    return failure(
        request,
        status.HTTP_400_BAD_REQUEST,
        {"code": "VALIDATION_ERROR", "message": "Invalid input data", "details": details},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error in request %s", request_id(request))
    return failure(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred", "details": []},
    )


def install_error_handlers(app: FastAPI) -> None:
    """Render every failure with the standard envelope."""
    app.add_exception_handler(IdentityError, _identity_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
