"""Bounded-concurrency track resolution against a catalog search API."""

__version__ = "0.1.0"
