"""
Error taxonomy and the terminal error handlers for the API.

Route handlers never build error responses themselves: they raise, and the
handlers registered here translate the exception into a status code and the
uniform body ``{"success": false, "error": ..., "details"?: ...}``.
"""

from __future__ import annotations

import logging
import socket
import traceback
from typing import Any, Optional

import requests
from botocore.exceptions import EndpointConnectionError
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class AppError(Exception):
    """Base class for errors that map onto an HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        is_operational: bool = True,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational
        self.details = details


class ValidationError(AppError):
    def __init__(self, message: str = "Invalid input data", details: Optional[Any] = None):
        super().__init__(message, 400, details=details)


class AuthenticationError(AppError):
    def __init__(self, message: str = "You are not authenticated"):
        super().__init__(message, 401)


class AuthorizationError(AppError):
    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message, 403)


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, 404)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict with the current state of the resource"):
        super().__init__(message, 409)


class RateLimitError(AppError):
    def __init__(self, message: str = "Too many requests", retry_after: int = 1):
        super().__init__(message, 429)
        self.retry_after = retry_after


class DatabaseError(AppError):
    def __init__(self, message: str = "Database error"):
        super().__init__(message, 500, is_operational=False)


class UploadError(AppError):
    def __init__(self, message: str = "Failed to upload image"):
        super().__init__(message, 500, is_operational=False)


class UpstreamError(Exception):
    """Failure reported by an external provider (auth, storage, database)."""

    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def _is_unique_violation(exc: BaseException) -> bool:
    if isinstance(exc, UpstreamError):
        return exc.code == UNIQUE_VIOLATION
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == UNIQUE_VIOLATION:
        return True
    text = str(orig)
    return "UNIQUE constraint failed" in text or "duplicate key value" in text


def _is_connection_failure(exc: BaseException) -> bool:
    return isinstance(
        exc,
        (
            ConnectionRefusedError,
            socket.gaierror,
            requests.exceptions.ConnectionError,
            OperationalError,
            EndpointConnectionError,
        ),
    )


def translate_error(exc: BaseException) -> AppError:
    """Map known upstream error signatures onto the taxonomy above."""
    if isinstance(exc, AppError):
        return exc

    message = str(exc) or ""
    if "Invalid login credentials" in message:
        return AuthenticationError("Invalid credentials")
    if "User already registered" in message:
        return ConflictError("User is already registered")
    if "Email not confirmed" in message:
        return AuthenticationError("Please confirm your email before signing in")
    if _is_unique_violation(exc):
        return ConflictError("A record with this data already exists")
    if _is_connection_failure(exc):
        return DatabaseError("Database connection error")
    return AppError("Internal server error", 500, is_operational=False)


def _field_name(loc: tuple) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) if parts else "request"


def _friendly_message(field: str, error: dict) -> str:
    ctx = error.get("ctx") or {}
    kind = error.get("type", "")
    if kind == "missing":
        return f"'{field}' is required"
    if kind == "string_too_short":
        return f"'{field}' must be at least {ctx.get('min_length')} characters long"
    if kind == "string_too_long":
        return f"'{field}' must be at most {ctx.get('max_length')} characters long"
    if kind == "string_type":
        return f"'{field}' must be a string"
    if kind in ("greater_than", "greater_than_equal"):
        return f"'{field}' must be a positive integer"
    if kind in ("int_parsing", "int_type"):
        return f"'{field}' must be an integer"
    msg = error.get("msg", "is invalid")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return f"'{field}' {msg}" if not msg.startswith(f"'{field}'") else msg


def error_details(errors: list[dict]) -> list[dict]:
    """Flatten pydantic error dicts into ``[{field, message}]`` pairs."""
    details = []
    for error in errors:
        field = _field_name(tuple(error.get("loc", ())))
        details.append({"field": field, "message": _friendly_message(field, error)})
    return details


def _client_host(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def error_response(
    request: Request, exc: BaseException, *, include_stack: bool
) -> JSONResponse:
    error = translate_error(exc)
    log_context = (
        error.status_code,
        error.message,
        request.method,
        request.url.path,
        _client_host(request),
    )
    if error.status_code >= 500:
        logger.error(
            "Request failed (%s %s): %s %s from %s",
            *log_context,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
    else:
        logger.info("Request rejected (%s %s): %s %s from %s", *log_context)

    body: dict[str, Any] = {"success": False, "error": error.message}
    headers: dict[str, str] = {}
    if error.details is not None:
        body["details"] = error.details
    if isinstance(error, RateLimitError):
        body["retryAfter"] = error.retry_after
        headers["Retry-After"] = str(error.retry_after)
    if include_stack:
        body["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return JSONResponse(status_code=error.status_code, content=body, headers=headers)


def _include_stack(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return settings is not None and not settings.is_production


def register_exception_handlers(app: FastAPI) -> None:
    """Install the terminal handlers that turn exceptions into JSON bodies."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: Exception):
        return error_response(request, exc, include_stack=_include_stack(request))

    # Provider failures are translated here rather than in the catch-all,
    # which Starlette re-raises after responding.
    for provider_error in (UpstreamError, SQLAlchemyError, requests.RequestException):
        app.add_exception_handler(provider_error, handle_app_error)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        error = ValidationError("Invalid parameters", details=error_details(exc.errors()))
        return error_response(request, error, include_stack=False)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            error: AppError = NotFoundError(
                f"Route {request.url.path} does not exist on this server"
            )
        else:
            error = AppError(str(exc.detail), exc.status_code)
        return error_response(request, error, include_stack=False)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        return error_response(request, exc, include_stack=_include_stack(request))
