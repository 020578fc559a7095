"""Domain-specific errors for trackmatch core modules."""

from __future__ import annotations

from trackmatch.core.types import ErrorKind


class InvalidInputError(ValueError):
    """Raised when invalid data is supplied to core domain operations."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class CatalogError(RuntimeError):
    """Classified catalog failure carrying its :data:`ErrorKind`."""

    def __init__(self, kind: ErrorKind, message: str, *, attempts: int = 1) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.attempts = attempts

    @property
    def retry_after_seconds(self) -> int | None:
        return getattr(self.kind, "retry_after_seconds", None)

    def __repr__(self) -> str:
        return f"CatalogError(kind={self.kind!r}, message={self.message!r}, attempts={self.attempts})"


__all__ = ["CatalogError", "InvalidInputError"]
