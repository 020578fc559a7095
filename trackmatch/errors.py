"""Unified error envelope for the trackmatch HTTP API."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from enum import Enum
import logging
from typing import Any
from uuid import uuid4

from fastapi import status
from fastapi.responses import JSONResponse

from trackmatch.core.errors import CatalogError
from trackmatch.core.types import AuthError, ClientError, RateLimited
from trackmatch.logging import get_logger


class ErrorCode(str, Enum):
    """Error codes exposed via the public API."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    CATALOG_ERROR = "CATALOG_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_logger = get_logger(__name__)


class AppError(Exception):
    """Base exception for errors rendered with the standard envelope."""

    __slots__ = ("message", "code", "http_status", "meta", "headers")

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        meta: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status
        self.meta = meta
        self.headers = headers

    def as_response(self, *, request_path: str, method: str) -> JSONResponse:
        return _build_response(
            message=self.message,
            code=self.code,
            status_code=self.http_status,
            request_path=request_path,
            method=method,
            meta=self.meta,
            headers=self.headers,
        )


class AuthenticationRequiredError(AppError):
    """The catalog credential is missing, expired or was rejected."""

    def __init__(
        self,
        message: str = "Authentication required. Please log in again.",
        *,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=ErrorCode.AUTH_ERROR,
            http_status=status.HTTP_401_UNAUTHORIZED,
            meta=meta,
            headers={"WWW-Authenticate": "Bearer"},
        )


class RateLimitedError(AppError):
    """The caller, or the catalog on the caller's behalf, exceeded a rate limit."""

    def __init__(
        self,
        message: str = "Too many requests.",
        *,
        retry_after_seconds: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        meta: dict[str, Any] | None = None
        merged: dict[str, str] = dict(headers or {})
        if retry_after_seconds is not None:
            retry_after = max(0, int(retry_after_seconds))
            meta = {"retry_after": retry_after}
            merged.setdefault("Retry-After", str(retry_after))
        super().__init__(
            message=message,
            code=ErrorCode.RATE_LIMIT,
            http_status=status.HTTP_429_TOO_MANY_REQUESTS,
            meta=meta,
            headers=merged or None,
        )


class DependencyError(AppError):
    """The catalog failed or rejected the request."""

    def __init__(
        self,
        message: str = "Catalog service is unavailable.",
        *,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=ErrorCode.CATALOG_ERROR,
            http_status=status_code,
            meta=meta,
        )


class InternalServerError(AppError):
    def __init__(self, message: str = "An unexpected error occurred.") -> None:
        super().__init__(
            message=message,
            code=ErrorCode.INTERNAL_ERROR,
            http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def to_application_error(error: CatalogError) -> AppError:
    """Translate a classified catalog failure into its API error."""

    kind = error.kind
    if isinstance(kind, AuthError):
        return AuthenticationRequiredError(error.message)
    if isinstance(kind, RateLimited):
        return RateLimitedError(error.message, retry_after_seconds=kind.retry_after_seconds)
    if isinstance(kind, ClientError) and 400 <= kind.status_code < 500:
        return DependencyError(
            error.message,
            status_code=kind.status_code,
            meta={"upstream_status": kind.status_code},
        )
    meta: dict[str, Any] = {"attempts": error.attempts}
    upstream_status = getattr(kind, "status_code", None)
    if upstream_status is not None:
        meta["upstream_status"] = upstream_status
    return DependencyError(error.message, meta=meta)


def _copy_meta(meta: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if meta is None:
        return None
    return dict(meta)


def _log_level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code in {status.HTTP_429_TOO_MANY_REQUESTS, 502, 503, 504}:
        return logging.WARNING
    return logging.INFO


def _build_response(
    *,
    message: str,
    code: ErrorCode,
    status_code: int,
    request_path: str,
    method: str,
    meta: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    debug_id = uuid4().hex

    payload: MutableMapping[str, Any] = {
        "ok": False,
        "error": {"code": code.value, "message": message},
    }
    safe_meta = _copy_meta(meta)
    if safe_meta:
        payload["error"]["meta"] = safe_meta

    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["X-Debug-Id"] = debug_id
    if headers:
        for name, value in headers.items():
            response.headers[name] = value

    _logger.log(
        _log_level_for_status(status_code),
        "API request failed",
        extra={
            "event": "api.error",
            "code": code.value,
            "status": status_code,
            "path": request_path,
            "method": method,
            "debug_id": debug_id,
        },
    )
    return response


def to_response(
    *,
    message: str,
    code: ErrorCode,
    status_code: int,
    request_path: str,
    method: str,
    meta: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Create an error response with the standard envelope."""

    return _build_response(
        message=message,
        code=code,
        status_code=status_code,
        request_path=request_path,
        method=method,
        meta=meta,
        headers=headers,
    )


__all__ = [
    "AppError",
    "AuthenticationRequiredError",
    "DependencyError",
    "ErrorCode",
    "InternalServerError",
    "RateLimitedError",
    "to_application_error",
    "to_response",
]
