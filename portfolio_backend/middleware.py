"""
HTTP middleware: hardened response headers and the global rate limit.
"""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from portfolio_backend.errors import RateLimitError, error_response
from portfolio_backend.security import client_address, request_settings

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
GLOBAL_OPERATION = "global"

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: https:; "
    "font-src 'self';"
)


def _is_https(request: Request) -> bool:
    return (
        request.url.scheme == "https"
        or request.headers.get("x-forwarded-proto") == "https"
    )


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
    if _is_https(request):
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
    return response


async def global_rate_limit(request: Request, call_next):
    """Coarse per-address limit applied ahead of the per-operation limits."""
    if request.url.path == HEALTH_PATH:
        return await call_next(request)

    settings = request_settings(request)
    limiter = request.app.state.rate_limiter
    decision = await run_in_threadpool(
        limiter.check,
        GLOBAL_OPERATION,
        client_address(request),
        settings.global_rate_limit_max,
        settings.global_rate_limit_window_seconds,
    )
    if not decision.allowed:
        error = RateLimitError(
            "You have exceeded the request limit. Try again later.",
            retry_after=decision.retry_after,
        )
        return error_response(request, error, include_stack=False)
    return await call_next(request)
