"""HTTP routers for the trackmatch service."""

from . import health, search

__all__ = ["health", "search"]
