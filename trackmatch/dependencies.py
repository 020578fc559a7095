"""FastAPI dependency providers."""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

from fastapi import Request

from trackmatch.config import AppConfig, load_config
from trackmatch.core.catalog_client import CatalogClient

CatalogClientFactory = Callable[[str], CatalogClient]


@lru_cache
def get_app_config() -> AppConfig:
    return load_config()


def get_config(request: Request) -> AppConfig:
    config = getattr(request.app.state, "config", None)
    if isinstance(config, AppConfig):
        return config
    return get_app_config()


def get_catalog_client_factory(request: Request) -> CatalogClientFactory:
    """Return a callable building a per-request client for a bearer credential.

    ``app.state.catalog_transport`` lets tests route catalog traffic to an
    ``httpx.MockTransport``.
    """

    config = get_config(request)
    transport = getattr(request.app.state, "catalog_transport", None)

    def factory(access_token: str) -> CatalogClient:
        return CatalogClient.from_config(access_token, config, transport=transport)

    return factory


__all__ = [
    "CatalogClientFactory",
    "get_app_config",
    "get_catalog_client_factory",
    "get_config",
]
