"""Application errors and the FastAPI handlers that serialize them."""

import traceback
from datetime import datetime, timezone
from typing import Any, Optional

from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from logging_config import get_logger

log = get_logger("errors")


class AppError(Exception):
    """Base exception for all API errors."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)


class ValidationFailed(AppError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class BusinessError(AppError):
    """Raised when a request breaks a business rule (empty cart, out of stock...)."""

    status_code = 400
    default_code = "BUSINESS_RULE_VIOLATION"


class AuthError(AppError):
    status_code = 401
    default_code = "AUTH_ERROR"


class AuthorizationError(AppError):
    status_code = 403
    default_code = "ACCESS_DENIED"


class NotFoundError(AppError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    default_code = "CONFLICT"


class PayloadTooLarge(AppError):
    status_code = 413
    default_code = "FILE_TOO_LARGE"


class RateLimited(AppError):
    status_code = 429
    default_code = "RATE_LIMIT_EXCEEDED"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_body(request: Request, message: str, code: str, details: Any = None, stack: Optional[str] = None) -> dict:
    error: dict[str, Any] = {"message": message, "code": code}
    if details is not None:
        error["details"] = details
    if stack:
        error["stack"] = stack
    return {
        "success": False,
        "error": error,
        "timestamp": _now_iso(),
        "requestId": getattr(request.state, "request_id", None),
    }


def _track(request: Request, code: str, status_code: int) -> None:
    monitor = getattr(request.app.state, "error_monitor", None)
    if monitor is not None:
        monitor.track_error(code, status_code)


def _respond(request: Request, status_code: int, message: str, code: str, details: Any = None, stack: Optional[str] = None) -> JSONResponse:
    context = f"{request.method} {request.url.path} -> {status_code} {code}: {message}"
    if status_code >= 500:
        log.error(context)
    else:
        log.warning(context)
    _track(request, code, status_code)
    return JSONResponse(
        status_code=status_code,
        content=error_body(request, message, code, details, stack),
    )


def format_validation_errors(errors: list[dict]) -> list[dict]:
    formatted = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "form")]
        formatted.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return formatted


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return _respond(request, exc.status_code, exc.message, exc.code, exc.details)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _respond(
        request,
        400,
        "Validation failed. Please check your input and try again.",
        "VALIDATION_ERROR",
        format_validation_errors(exc.errors()),
    )


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError) -> JSONResponse:
    key_value = (exc.details or {}).get("keyValue") or {}
    field = next(iter(key_value), "field")
    return _respond(request, 409, f"{field.capitalize()} '{key_value.get(field, '')}' already exists", "DUPLICATE_FIELD")


async def invalid_id_handler(request: Request, exc: InvalidId) -> JSONResponse:
    return _respond(request, 400, "Invalid ID format", "INVALID_ID")


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        message, code = f"Route {request.url.path} not found", "NOT_FOUND"
    else:
        message, code = str(exc.detail), "HTTP_ERROR"
    return _respond(request, exc.status_code, message, code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    settings = getattr(request.app.state, "settings", None)
    stack = None
    if settings is not None and settings.is_development:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return _respond(request, 500, "Internal Server Error", "INTERNAL_ERROR", stack=stack)


def install_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(InvalidId, invalid_id_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
