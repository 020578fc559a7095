"""Request identifiers and structured access logging."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from trackmatch.logging import get_logger
from trackmatch.logging_events import log_event


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an identifier and log one ``api.request`` event.

    Streaming responses are logged when the handler returns, not when the
    body finishes, so ``duration_ms`` covers time to first byte only.
    """

    def __init__(self, app: ASGIApp, *, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name
        self._logger = get_logger(__name__)

    async def dispatch(  # type: ignore[override]
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        incoming = request.headers.get(self._header_name, "").strip()
        request_id = incoming or str(uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            log_event(
                self._logger,
                "api.request",
                component="api",
                status="ok" if status_code < 400 else "error",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 3),
                entity_id=request_id,
            )
        if self._header_name not in response.headers:
            response.headers[self._header_name] = request_id
        return response


__all__ = ["RequestContextMiddleware"]
