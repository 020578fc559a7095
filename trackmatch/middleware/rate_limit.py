"""Token bucket rate limiting for the guarded API routes."""

from __future__ import annotations

import math

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from trackmatch.config import RateLimitConfig, RateLimitMiddlewareConfig
from trackmatch.errors import RateLimitedError
from trackmatch.logging import get_logger
from trackmatch.logging_events import log_event
from trackmatch.utils.rate_limit import RateLimitResult, RateLimitStore

_logger = get_logger(__name__)

# Catalog resolution fans out into many upstream calls, so it is limited per
# session with the tighter preset.
_SESSION_SCOPED_PREFIXES: tuple[str, ...] = ("/api/catalog/search",)


def client_ip(request: Request) -> str:
    """Return the caller's address as reported by the proxy chain."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return "unknown"


def session_id(request: Request) -> str:
    """Return a stable identity for the caller's browser session."""

    session = request.cookies.get("session_id")
    if session:
        return session
    access_token = request.cookies.get("access_token")
    if access_token:
        return access_token[:32]
    user_agent = request.headers.get("user-agent", "")
    return f"{client_ip(request)}:{user_agent[:50]}"


def _is_guarded(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path.startswith(prefix) for prefix in prefixes)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject callers that exhausted their bucket with a 429 envelope."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        config: RateLimitMiddlewareConfig,
        store: RateLimitStore | None = None,
    ) -> None:
        super().__init__(app)
        self._config = config
        self._store = store

    def _resolve_store(self, request: Request) -> RateLimitStore:
        store = getattr(request.app.state, "rate_limit_store", None)
        if store is None:
            if self._store is None:
                self._store = RateLimitStore(
                    sweep_interval_ms=self._config.sweep_interval_ms,
                    max_idle_ms=self._config.max_idle_ms,
                )
            store = self._store
        return store

    def _select(self, request: Request) -> tuple[str, RateLimitConfig]:
        path = request.url.path
        if _is_guarded(path, _SESSION_SCOPED_PREFIXES):
            return f"generate:{session_id(request)}", self._config.generate
        return f"general:{client_ip(request)}", self._config.general

    async def dispatch(  # type: ignore[override]
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not self._config.enabled or not _is_guarded(path, self._config.paths):
            return await call_next(request)

        identifier, bucket_config = self._select(request)
        result = self._resolve_store(request).check(identifier, bucket_config)
        if not result.allowed:
            retry_after = result.retry_after_seconds or 1
            log_event(
                _logger,
                "api.rate_limited",
                component="middleware.rate_limit",
                status="error",
                path=path,
                method=request.method,
                identifier=identifier.split(":", 1)[0],
                retry_after_s=retry_after,
            )
            error = RateLimitedError(
                "Too many requests. Please try again later.",
                retry_after_seconds=retry_after,
                headers=_limit_headers(bucket_config, result),
            )
            return error.as_response(request_path=path, method=request.method)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(bucket_config.capacity)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response


def _limit_headers(config: RateLimitConfig, result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(config.capacity),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(math.ceil(result.reset_at_ms / 1000)),
    }


__all__ = ["RateLimitMiddleware", "client_ip", "session_id"]
