"""
Request guards used as FastAPI dependencies: input sanitization, rate
limiting, the auth gate, table permissions and the database audit log.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from fastapi import Depends, Request
from starlette.datastructures import UploadFile

from portfolio_backend.auth import AuthClient, Identity
from portfolio_backend.config import Settings, get_settings
from portfolio_backend.dependencies import get_auth_client
from portfolio_backend.errors import (
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    ValidationError,
)
from portfolio_backend.rate_limit import DEFAULT_WINDOW_SECONDS, RateLimiter
from portfolio_backend.sanitizer import UnsafeInput, sanitize_fields, suspicious_matches

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

TABLE_PERMISSIONS = {
    "proyectos": {
        "read": ("authenticated", "admin"),
        "create": ("authenticated", "admin"),
        "update": ("admin",),
        "delete": ("admin",),
    },
    "presentador": {
        "read": ("authenticated", "admin"),
        "create": ("admin",),
        "update": ("admin",),
        "delete": ("admin",),
    },
}


def request_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def client_address(request: Request) -> str:
    """Client IP, honouring one proxy hop when TRUST_PROXY is on (off by default)."""
    if request_settings(request).trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            if hops:
                return hops[-1]
    return request.client.host if request.client else "unknown"


def _warn(request: Request, message: str, *args: Any) -> None:
    if not request_settings(request).is_production:
        logger.warning(message, *args)


def _sanitize(request: Request, fields: dict, source: str) -> dict:
    try:
        return sanitize_fields(fields)
    except UnsafeInput as exc:
        _warn(
            request,
            "Rejected %s field %r from %s: %s",
            source,
            exc.field,
            client_address(request),
            exc.reason,
        )
        raise ValidationError(
            "Invalid input data",
            details=[{"field": exc.field, "message": str(exc)}],
        ) from None


async def _read_body(request: Request) -> tuple[dict, dict[str, UploadFile]]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        if not await request.body():
            return {}, {}
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Malformed JSON body") from None
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data, {}

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        fields: dict = {}
        files: dict[str, UploadFile] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                files[key] = value
            else:
                fields[key] = value
        return fields, files

    if await request.body():
        raise ValidationError("Unsupported content type")
    return {}, {}


async def sanitize_request(request: Request) -> None:
    """
    App-wide guard that runs before every route.

    Strips markup and SQL tokens from query, path and body fields, rejects
    values that look like SQL statements, and leaves the cleaned payload on
    ``request.state.payload`` (uploaded files on ``request.state.files``).
    """
    fields, files = await _read_body(request)

    user_agent = request.headers.get("user-agent", "")
    matches = suspicious_matches(
        str(request.url), user_agent, json.dumps(fields, default=str)
    )
    if matches:
        _warn(
            request,
            "Suspicious activity from %s on %s %s: %s",
            client_address(request),
            request.method,
            request.url.path,
            ", ".join(matches),
        )

    request.state.query = _sanitize(request, dict(request.query_params), "query")
    request.state.path_params = _sanitize(request, dict(request.path_params), "path")
    request.state.payload = _sanitize(request, fields, "body")
    request.state.files = files


def get_payload(request: Request) -> dict:
    return getattr(request.state, "payload", {})


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def rate_limit(
    operation: str,
    max_requests: int,
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
) -> Callable[..., None]:
    """Per-operation limit keyed by client address."""

    def guard(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
        decision = limiter.check(
            operation, client_address(request), max_requests, window_seconds
        )
        if not decision.allowed:
            _warn(
                request,
                "Rate limit exceeded for %s from %s (max %d)",
                operation,
                client_address(request),
                max_requests,
            )
            raise RateLimitError(
                f"Limit of {max_requests} requests for '{operation}' exceeded; "
                f"try again in {decision.retry_after} seconds",
                retry_after=decision.retry_after,
            )

    return guard


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


def require_user(
    request: Request, auth: AuthClient = Depends(get_auth_client)
) -> Identity:
    token = bearer_token(request)
    if token is None:
        raise AuthenticationError("Access token required")
    identity = auth.get_user(token)
    if identity is None:
        raise AuthenticationError("Invalid or expired token")
    request.state.user = identity
    request.state.access_token = token
    return identity


def optional_user(
    request: Request, auth: AuthClient = Depends(get_auth_client)
) -> Optional[Identity]:
    """Like ``require_user`` but leaves the identity unset instead of failing."""
    request.state.user = None
    token = bearer_token(request)
    if token is None:
        return None
    try:
        identity = auth.get_user(token)
    except Exception as exc:
        logger.info("Optional auth lookup failed: %s", exc)
        return None
    request.state.user = identity
    return identity


def require_permission(table: str, operation: str) -> Callable[..., Identity]:
    allowed = TABLE_PERMISSIONS.get(table, {}).get(operation, ())

    def guard(request: Request, user: Identity = Depends(require_user)) -> Identity:
        if user.role not in allowed:
            _warn(
                request,
                "Access denied to %s.%s for user %s (role %s)",
                table,
                operation,
                user.id,
                user.role,
            )
            raise AuthorizationError(
                f"You are not allowed to perform '{operation}' on '{table}'"
            )
        return user

    return guard


def database_audit(operation: str, table: str) -> Callable[..., Any]:
    """Log the start and outcome of a store-touching request."""

    def audit(request: Request):
        user = getattr(request.state, "user", None)
        user_id = user.id if user else None
        address = client_address(request)
        logger.info("DB %s on %s started (user=%s ip=%s)", operation, table, user_id, address)
        try:
            yield
        except Exception:
            logger.info("DB %s on %s failed (user=%s ip=%s)", operation, table, user_id, address)
            raise
        logger.info("DB %s on %s completed (user=%s ip=%s)", operation, table, user_id, address)

    return audit
