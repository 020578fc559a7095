"""Application middleware registration helpers."""

from __future__ import annotations

from fastapi import FastAPI

from trackmatch.config import AppConfig

from .errors import setup_exception_handlers
from .logging import RequestContextMiddleware
from .rate_limit import RateLimitMiddleware


def install_middleware(app: FastAPI, config: AppConfig) -> None:
    """Install the middleware stack and exception handlers on ``app``."""

    app.add_middleware(RateLimitMiddleware, config=config.rate_limit)
    # Added last so it wraps the rate limiter and sees its 429 responses.
    app.add_middleware(RequestContextMiddleware)

    setup_exception_handlers(app)


__all__ = ["install_middleware"]
