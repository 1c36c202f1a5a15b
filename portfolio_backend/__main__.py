"""
Run the API with uvicorn: ``python -m portfolio_backend``.
"""

from __future__ import annotations

import logging

import uvicorn

from portfolio_backend.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    logger.info(
        "Starting server on port %s (mode: %s)", settings.port, settings.node_env
    )
    uvicorn.run(
        "portfolio_backend.app:app",
        host="0.0.0.0",
        port=settings.port,
    )


if __name__ == "__main__":
    main()
