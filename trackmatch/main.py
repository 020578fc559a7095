"""Entry point for the trackmatch FastAPI application."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from trackmatch import __version__
from trackmatch.api import health as health_api
from trackmatch.api import search as search_api
from trackmatch.config import AppConfig, load_config
from trackmatch.logging import configure_logging, get_logger
from trackmatch.logging_events import log_event
from trackmatch.middleware import install_middleware
from trackmatch.utils.rate_limit import RateLimitStore

logger = get_logger(__name__)

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config: AppConfig = app.state.config
    store: RateLimitStore = app.state.rate_limit_store
    await store.start()
    log_event(
        logger,
        "app.startup",
        component="app",
        version=__version__,
        rate_limit_enabled=config.rate_limit.enabled,
        concurrency=config.resolver.concurrency,
    )
    try:
        yield
    finally:
        await store.aclose()
        log_event(logger, "app.shutdown", component="app")


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build the application; ``config`` defaults to the runtime environment."""

    app_config = config or load_config()
    configure_logging(app_config.log_level)

    app = FastAPI(title="trackmatch", version=__version__, lifespan=lifespan)
    app.state.config = app_config
    app.state.rate_limit_store = RateLimitStore(
        sweep_interval_ms=app_config.rate_limit.sweep_interval_ms,
        max_idle_ms=app_config.rate_limit.max_idle_ms,
    )
    app.state.catalog_transport = None

    install_middleware(app, app_config)
    app.include_router(health_api.router)
    app.include_router(search_api.router, prefix=API_PREFIX)
    return app


__all__ = ["create_app", "lifespan"]
