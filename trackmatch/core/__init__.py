"""trackmatch core domain exports."""

from .errors import CatalogError, InvalidInputError
from .matching import fuzzy_match, select_best_match, track_matches
from .similarity import edit_distance, similarity
from .types import (
    AuthError,
    CatalogItem,
    ClientError,
    ErrorKind,
    MatchResult,
    Query,
    QueryState,
    RateLimited,
    ServerError,
    build_queries,
    classify_status,
)

__all__ = [
    "AuthError",
    "CatalogError",
    "CatalogItem",
    "ClientError",
    "ErrorKind",
    "InvalidInputError",
    "MatchResult",
    "Query",
    "QueryState",
    "RateLimited",
    "ServerError",
    "build_queries",
    "classify_status",
    "edit_distance",
    "fuzzy_match",
    "select_best_match",
    "similarity",
    "track_matches",
]
