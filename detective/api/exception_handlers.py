"""Global exception handlers for the FastAPI application.

Every error leaves the API in the same envelope:

    {
        "error": {
            "code": "url_metric_group_complete",
            "message": "The URL Metric group for the provided viewport is already complete",
            "details": {"minimum_viewport_width": 400, "maximum_viewport_width": 600},
            "request_id": "1a2b3c4d",
            "timestamp": "2025-01-01T00:00:00+00:00"
        }
    }

Usage:
    from detective.api.exception_handlers import register_exception_handlers
    app = FastAPI()
    register_exception_handlers(app)
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from detective.core.exceptions import DetectiveError
from detective.core.logging import get_logger, sanitize_error

logger = get_logger(__name__)


def get_request_id(request: Request) -> str | None:
    """Request id assigned by RequestIDMiddleware, else the client-sent header."""
    request_id: str | None = getattr(request.state, "request_id", None)
    return request_id or request.headers.get("X-Request-ID")


def build_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request: Request | None = None,
    details: dict[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Wrap an error in the ``{"error": {...}}`` envelope shown above.

    ``details`` and ``request_id`` are omitted when empty.
    """
    request_id = get_request_id(request) if request is not None else None
    optional = {"details": details, "request_id": request_id}
    body: dict[str, Any] = {
        "code": error_code,
        "message": message,
        **{key: value for key, value in optional.items() if value},
        "timestamp": datetime.now(UTC).isoformat(),
    }
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


def _log_context(request: Request, **fields: Any) -> dict[str, Any]:
    context: dict[str, Any] = {"path": request.url.path, "method": request.method, **fields}
    request_id = get_request_id(request)
    if request_id:
        context["request_id"] = request_id
    return context


async def detective_exception_handler(request: Request, exc: DetectiveError) -> JSONResponse:
    """Map a DetectiveError to its status code; rejections log at INFO."""
    log_context = _log_context(
        request, error_code=exc.error_code, status_code=exc.status_code, details=exc.details
    )
    if exc.status_code >= 500:
        logger.error(f"Internal error: {exc.message}", extra=log_context, exc_info=True)
    else:
        logger.info(f"Rejected request: {exc.error_code}", extra=log_context)

    return build_error_response(
        exc.error_code, exc.message, exc.status_code, request=request, details=exc.details
    )


def _describe_validation_error(error: Mapping[str, Any]) -> dict[str, Any]:
    rejected = error.get("input")
    return {
        "field": ".".join(str(part) for part in error.get("loc", ())) or "unknown",
        "message": error.get("msg", "Validation error"),
        "value": None if rejected is None else str(rejected)[:100],
    }


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report schema failures as 400 ``rest_invalid_param``, one entry per offending field."""
    errors = [_describe_validation_error(error) for error in exc.errors()]
    logger.info(
        "Request validation failed", extra=_log_context(request, error_count=len(errors))
    )
    return build_error_response(
        "rest_invalid_param",
        "Invalid parameter(s)",
        status.HTTP_400_BAD_REQUEST,
        request=request,
        details={"errors": errors},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {sanitize_error(exc)}",
        extra=_log_context(request, exception_type=type(exc).__name__),
        exc_info=True,
    )
    return build_error_response(
        "internal_error",
        "An unexpected error occurred",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        request=request,
    )


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette types handlers as taking a bare Exception
    app.add_exception_handler(DetectiveError, detective_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_exception_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, generic_exception_handler)
