"""
FastAPI application entry point for the portfolio backend.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from portfolio_backend.config import Settings, get_settings
from portfolio_backend.dependencies import build_rate_limiter
from portfolio_backend.errors import register_exception_handlers
from portfolio_backend.middleware import HEALTH_PATH, global_rate_limit, security_headers
from portfolio_backend.rate_limit import RateLimiter
from portfolio_backend.routes import router
from portfolio_backend.schemas import HealthResponse
from portfolio_backend.security import request_settings, sanitize_request

VERSION = "1.0.0"

_STARTED_AT = time.monotonic()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(
    settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="Portfolio Backend (FastAPI)",
        version=VERSION,
        dependencies=[Depends(sanitize_request)],
    )
    app.state.settings = settings
    app.state.rate_limiter = rate_limiter or build_rate_limiter(settings)

    # Added last-to-first: security headers wrap everything, including 429s.
    app.middleware("http")(global_rate_limit)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )
    app.middleware("http")(security_headers)

    register_exception_handlers(app)

    @app.get(HEALTH_PATH, response_model=HealthResponse)
    def health(request: Request):
        return HealthResponse(
            status="OK",
            timestamp=_now_iso(),
            uptime=time.monotonic() - _STARTED_AT,
            environment=request_settings(request).node_env,
        )

    @app.get("/")
    def root():
        return {
            "message": "API is running",
            "version": VERSION,
            "timestamp": _now_iso(),
            "endpoints": {
                "profiles": f"{settings.api_prefix}/profiles",
                "projects": f"{settings.api_prefix}/projects",
                "health": HEALTH_PATH,
            },
        }

    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
