"""Data structures shared by the matcher, catalog client and scheduler."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, TypeAlias


class QueryState(str, Enum):
    """Lifecycle of a single query inside a resolution run."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class Query:
    """A ``(title, artist)`` pair tagged with its position in the submitted batch."""

    index: int
    title: str
    artist: str


def build_queries(pairs: Iterable[tuple[str, str]]) -> list[Query]:
    """Return queries indexed by their position in ``pairs``."""

    return [
        Query(index=index, title=str(title), artist=str(artist))
        for index, (title, artist) in enumerate(pairs)
    ]


@dataclass(slots=True, frozen=True)
class CatalogArtist:
    id: str
    name: str


@dataclass(slots=True, frozen=True)
class CatalogImage:
    url: str
    width: int | None = None
    height: int | None = None


@dataclass(slots=True, frozen=True)
class CatalogAlbum:
    id: str
    name: str
    images: tuple[CatalogImage, ...] = ()


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _as_optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


@dataclass(slots=True, frozen=True)
class CatalogItem:
    """Track record returned by the catalog search endpoint."""

    id: str
    uri: str
    name: str
    artists: tuple[CatalogArtist, ...] = ()
    album: CatalogAlbum | None = None
    duration_ms: int | None = None

    @property
    def artist_names(self) -> tuple[str, ...]:
        return tuple(artist.name for artist in self.artists)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CatalogItem":
        artists: list[CatalogArtist] = []
        for entry in payload.get("artists") or []:
            if isinstance(entry, Mapping):
                artists.append(
                    CatalogArtist(id=_as_text(entry.get("id")), name=_as_text(entry.get("name")))
                )

        album: CatalogAlbum | None = None
        album_payload = payload.get("album")
        if isinstance(album_payload, Mapping):
            images = tuple(
                CatalogImage(
                    url=_as_text(image.get("url")),
                    width=_as_optional_int(image.get("width")),
                    height=_as_optional_int(image.get("height")),
                )
                for image in album_payload.get("images") or []
                if isinstance(image, Mapping)
            )
            album = CatalogAlbum(
                id=_as_text(album_payload.get("id")),
                name=_as_text(album_payload.get("name")),
                images=images,
            )

        return cls(
            id=_as_text(payload.get("id")),
            uri=_as_text(payload.get("uri")),
            name=_as_text(payload.get("name")),
            artists=tuple(artists),
            album=album,
            duration_ms=_as_optional_int(payload.get("duration_ms")),
        )

    def to_dict(self) -> dict[str, Any]:
        album: dict[str, Any] | None = None
        if self.album is not None:
            album = {
                "id": self.album.id,
                "name": self.album.name,
                "images": [
                    {"url": image.url, "width": image.width, "height": image.height}
                    for image in self.album.images
                ],
            }
        return {
            "id": self.id,
            "uri": self.uri,
            "name": self.name,
            "artists": [{"id": artist.id, "name": artist.name} for artist in self.artists],
            "album": album,
            "duration_ms": self.duration_ms,
        }


ErrorCodeLiteral = Literal["AUTH_ERROR", "RATE_LIMIT", "SERVER_ERROR", "CLIENT_ERROR"]


@dataclass(slots=True, frozen=True)
class AuthError:
    """The catalog rejected the bearer credential (HTTP 401)."""

    code: ErrorCodeLiteral = field(default="AUTH_ERROR", init=False)
    retryable: bool = field(default=False, init=False)


@dataclass(slots=True, frozen=True)
class RateLimited:
    """The catalog throttled the request (HTTP 429)."""

    retry_after_seconds: int | None = None
    code: ErrorCodeLiteral = field(default="RATE_LIMIT", init=False)
    retryable: bool = field(default=True, init=False)


@dataclass(slots=True, frozen=True)
class ServerError:
    """The catalog failed (HTTP 5xx); ``status_code`` is ``None`` without a response."""

    status_code: int | None = None
    code: ErrorCodeLiteral = field(default="SERVER_ERROR", init=False)
    retryable: bool = field(default=True, init=False)


@dataclass(slots=True, frozen=True)
class ClientError:
    """The catalog rejected the request itself (any other non-2xx status)."""

    status_code: int
    code: ErrorCodeLiteral = field(default="CLIENT_ERROR", init=False)
    retryable: bool = field(default=False, init=False)


ErrorKind: TypeAlias = AuthError | RateLimited | ServerError | ClientError


def classify_status(status_code: int, retry_after_seconds: int | None = None) -> ErrorKind:
    """Map a non-2xx HTTP status onto an :data:`ErrorKind`."""

    if status_code == 401:
        return AuthError()
    if status_code == 429:
        return RateLimited(retry_after_seconds=retry_after_seconds)
    if 500 <= status_code < 600:
        return ServerError(status_code=status_code)
    return ClientError(status_code=status_code)


@dataclass(slots=True, frozen=True)
class MatchResult:
    """Terminal outcome for one query."""

    query: Query
    item: CatalogItem | None = None
    error: ErrorKind | None = None

    @property
    def state(self) -> QueryState:
        if self.error is not None:
            return QueryState.FAILED
        if self.item is not None:
            return QueryState.MATCHED
        return QueryState.UNMATCHED

    @property
    def matched(self) -> bool:
        return self.item is not None


__all__ = [
    "AuthError",
    "CatalogAlbum",
    "CatalogArtist",
    "CatalogImage",
    "CatalogItem",
    "ClientError",
    "ErrorKind",
    "MatchResult",
    "Query",
    "QueryState",
    "RateLimited",
    "ServerError",
    "build_queries",
    "classify_status",
]
