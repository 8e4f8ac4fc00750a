"""Error taxonomy and the FastAPI handlers that render it.

Every failure the HTTP layer can surface is an :class:`AppError` carrying an
HTTP status and a stable machine-readable ``code``. Handlers render a JSON
body with the request context (path, method, request id). Unexpected
exceptions are logged with their traceback and rendered as a generic 500;
the traceback is only echoed back when ``APP_ENV=development``.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class ValidationError(AppError):
    status_code = 422
    code = "VALIDATION_ERROR"


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class BadRequestError(AppError):
    status_code = 400
    code = "BAD_REQUEST"


class RateLimitExceeded(AppError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Too many requests, please try again later.",
        *,
        retry_after: int,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.retry_after = retry_after


class InternalError(AppError):
    status_code = 500
    code = "INTERNAL_ERROR"


class MemoryStorageError(InternalError):
    """Storing or recalling a memory failed; the provider may safely retry."""

    code = "MEMORY_STORAGE_FAILED"
    retryable = True


def _settings(request: Request) -> Settings:
    container = getattr(request.app.state, "container", None)
    return container.settings if container is not None else get_settings()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "X-Request-Id"
    )


def error_body(request: Request, error: str, code: str, details: Any = None) -> dict:
    body: dict[str, Any] = {
        "error": error,
        "code": code,
        "timestamp": _timestamp(),
        "path": request.url.path,
        "method": request.method,
        "requestId": _request_id(request),
    }
    if details is not None:
        body["details"] = details
    return body


def rate_limit_response(exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "Too Many Requests",
            "message": exc.message,
            "code": exc.code,
            "retryAfter": exc.retry_after,
            "timestamp": _timestamp(),
        },
        headers={"Retry-After": str(exc.retry_after)},
    )


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, RateLimitExceeded):
        logger.warning(
            "Rate limit exceeded on %s (code=%s, retry_after=%s)",
            request.url.path,
            exc.code,
            exc.retry_after,
        )
        return rate_limit_response(exc)
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        message = "Internal server error"
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        message = exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, message, exc.code, exc.details),
    )


async def _validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=error_body(request, "Validation failed", "VALIDATION_ERROR", details),
    )


async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = error_body(request, "Internal server error", "INTERNAL_ERROR")
    if _settings(request).is_development:
        body["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return JSONResponse(status_code=500, content=body)


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_handler)
    app.add_exception_handler(Exception, _unhandled_handler)
