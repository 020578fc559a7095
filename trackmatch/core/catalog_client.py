"""Async HTTP client for the catalog search API."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
import math
from typing import Any, Awaitable, Callable

import httpx

from trackmatch.config import (
    DEFAULT_CATALOG_BASE_URL,
    DEFAULT_CATALOG_SEARCH_LIMIT,
    DEFAULT_CATALOG_TIMEOUT_MS,
    DEFAULT_MATCH_THRESHOLD,
    AppConfig,
    BackoffConfig,
    CatalogConfig,
)
from trackmatch.core.errors import CatalogError, InvalidInputError
from trackmatch.core.matching import select_best_match
from trackmatch.core.types import (
    AuthError,
    CatalogItem,
    ErrorKind,
    ServerError,
    classify_status,
)
from trackmatch.logging import get_logger
from trackmatch.logging_events import log_event
from trackmatch.utils.retry import with_backoff

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


def parse_retry_after(value: str | None) -> int | None:
    """Return the ``Retry-After`` hint in whole seconds, if it can be parsed."""

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return max(0, int(text))
    except ValueError:
        pass
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    delta = (parsed - datetime.now(UTC)).total_seconds()
    return max(0, math.ceil(delta))


def _extract_error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, Mapping):
        return None
    error = payload.get("error")
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


class CatalogClient:
    """Authenticated search client with classified failures and backoff.

    Every non-2xx response becomes a :class:`CatalogError` whose ``kind`` is
    one of the :data:`ErrorKind` variants. Rate limiting and server errors are
    retried according to ``backoff``; credential rejection never is.
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = DEFAULT_CATALOG_BASE_URL,
        search_limit: int = DEFAULT_CATALOG_SEARCH_LIMIT,
        timeout_ms: int = DEFAULT_CATALOG_TIMEOUT_MS,
        backoff: BackoffConfig | None = None,
        enable_retries: bool = True,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        token = (access_token or "").strip()
        if not token:
            raise InvalidInputError("Access token is required")
        if search_limit < 1:
            raise InvalidInputError("search_limit must be positive")
        self._access_token = token
        self._config = CatalogConfig(
            base_url=(base_url or DEFAULT_CATALOG_BASE_URL).rstrip("/"),
            search_limit=int(search_limit),
            timeout_ms=int(timeout_ms),
            enable_retries=bool(enable_retries),
        )
        self._backoff = backoff or BackoffConfig()
        if not self._config.enable_retries:
            self._backoff = BackoffConfig(
                max_retries=0,
                base_delay_ms=self._backoff.base_delay_ms,
                max_delay_ms=self._backoff.max_delay_ms,
                jitter_factor=self._backoff.jitter_factor,
            )
        self._match_threshold = match_threshold
        self._transport = transport
        self._sleep: Sleeper = sleep or asyncio.sleep
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        access_token: str,
        config: AppConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleeper | None = None,
    ) -> "CatalogClient":
        return cls(
            access_token,
            base_url=config.catalog.base_url,
            search_limit=config.catalog.search_limit,
            timeout_ms=config.catalog.timeout_ms,
            backoff=config.backoff,
            enable_retries=config.catalog.enable_retries,
            match_threshold=config.resolver.match_threshold,
            transport=transport,
            sleep=sleep,
        )

    @property
    def config(self) -> CatalogConfig:
        return self._config

    @property
    def backoff(self) -> BackoffConfig:
        return self._backoff

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout_seconds = max(self._config.timeout_ms, 100) / 1000
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                timeout=httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 5.0)),
                headers={
                    "Authorization": f"Bearer {self._access_token}",
                    "Accept": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def search_tracks(
        self,
        title: str,
        artist: str,
        *,
        sleep: Sleeper | None = None,
    ) -> list[CatalogItem]:
        """Return up to ``search_limit`` candidates in provider ranking order."""

        payload = await self.get_json(
            "/search",
            params={
                "q": f"track:{title} artist:{artist}",
                "type": "track",
                "limit": self._config.search_limit,
            },
            sleep=sleep,
        )
        tracks = payload.get("tracks") if isinstance(payload, Mapping) else None
        items = tracks.get("items") if isinstance(tracks, Mapping) else None
        if not isinstance(items, list):
            return []
        return [CatalogItem.from_payload(entry) for entry in items if isinstance(entry, Mapping)]

    async def search_track(
        self,
        title: str,
        artist: str,
        *,
        sleep: Sleeper | None = None,
        threshold: float | None = None,
    ) -> CatalogItem | None:
        """Return the first candidate that fuzzy-matches ``title`` and ``artist``."""

        candidates = await self.search_tracks(title, artist, sleep=sleep)
        if not candidates:
            return None
        effective = self._match_threshold if threshold is None else threshold
        return select_best_match(title, artist, candidates, effective)

    async def get_json(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        sleep: Sleeper | None = None,
    ) -> Any:
        """GET ``path`` and decode the JSON body, retrying transient failures."""

        attempts = 0

        async def _perform() -> Any:
            nonlocal attempts
            attempts += 1
            return await self._request_once(path, params=params, attempt=attempts)

        def _classify(error: Exception) -> ErrorKind | None:
            if isinstance(error, CatalogError):
                return error.kind
            return None

        try:
            return await with_backoff(
                _perform,
                classify=_classify,
                config=self._backoff,
                sleep=sleep or self._sleep,
                event="catalog.retry",
            )
        except CatalogError as exc:
            log_event(
                logger,
                "catalog.request_failed",
                level=logging.WARNING,
                path=path,
                code=exc.kind.code,
                attempts=attempts,
            )
            raise

    async def _request_once(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None,
        attempt: int,
    ) -> Any:
        try:
            response = await self._http().get(path, params=params)
        except httpx.TransportError as exc:
            raise CatalogError(
                ServerError(status_code=None),
                f"Catalog request failed: {exc.__class__.__name__}",
                attempts=attempt,
            ) from exc

        if response.is_success:
            if response.status_code == httpx.codes.NO_CONTENT or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise CatalogError(
                    ServerError(status_code=response.status_code),
                    "Catalog returned invalid JSON",
                    attempts=attempt,
                ) from exc

        status_code = response.status_code
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        kind = classify_status(status_code, retry_after)
        if isinstance(kind, AuthError):
            message = "Authentication required. Please log in again."
        elif status_code == httpx.codes.TOO_MANY_REQUESTS:
            message = "Rate limit exceeded. Please try again later."
        else:
            message = _extract_error_message(response) or f"Catalog API error: {status_code}"
        raise CatalogError(kind, message, attempts=attempt)


__all__ = ["CatalogClient", "parse_retry_after"]
