"""
User Profiles API — exception handlers

Every failure leaves the API as ``{"status": "error", "message": ...}``;
validation failures add ``errors: [{path, message}]`` listing every
violation found.  Unexpected exceptions are logged with their traceback and
reported as a generic 500; the exception text is echoed back only in the
development environment.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import AppError, RequestValidationFailed
from app.schemas.user import ErrorDetail, ErrorEnvelope

logger = structlog.get_logger("profiles.api.errors")

_VALUE_ERROR_PREFIX = "Value error, "


def _error_response(
    status_code: int,
    message: str,
    errors: list[ErrorDetail] | None = None,
    detail: str | None = None,
) -> JSONResponse:
    body = ErrorEnvelope(message=message, errors=errors, detail=detail)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
    )


def format_validation_errors(raw_errors) -> list[ErrorDetail]:
    """Flatten Pydantic/FastAPI error dicts into ``{path, message}`` pairs."""
    details = []
    for err in raw_errors:
        path = ".".join(str(part) for part in err.get("loc", ()))
        message = err.get("msg", "Invalid value")
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX):]
        details.append(ErrorDetail(path=path, message=message))
    return details


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    errors = None
    if isinstance(exc, RequestValidationFailed) and exc.errors:
        errors = [ErrorDetail(**e) for e in exc.errors]

    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            status=exc.status_code,
            error=exc.message,
        )
    return _error_response(exc.status_code, exc.message, errors)


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = format_validation_errors(exc.errors())
    logger.info(
        "request_validation_failed",
        method=request.method,
        path=request.url.path,
        error_count=len(errors),
    )
    return _error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", errors)


async def handle_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        message = f"Route {request.method} {request.url.path} not found"
    else:
        message = str(exc.detail)
    response = _error_response(exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
    )
    settings = getattr(request.app.state, "settings", None)
    detail = str(exc) if settings is not None and settings.is_development else None
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        detail=detail,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unexpected_error)
