"""Pydantic models for the catalog search endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SongIn(BaseModel):
    """A candidate song as produced upstream of the resolver."""

    title: str = Field(..., description="Song title as suggested")
    artist: str = Field(..., description="Primary artist as suggested")
    album: str | None = Field(default=None, description="Album, if known")
    year: int | None = Field(default=None, description="Release year, if known")

    @field_validator("title", "artist")
    @classmethod
    def _ensure_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    songs: list[SongIn] = Field(..., min_length=1, description="Songs to resolve")
    access_token: str = Field(
        ...,
        alias="accessToken",
        description="Bearer credential for the catalog API",
    )

    @field_validator("access_token")
    @classmethod
    def _ensure_token(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("accessToken is required")
        return stripped


class SearchResultOut(BaseModel):
    song: SongIn
    track: dict[str, Any] | None = None
    error: str | None = None


class SearchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    results: list[SearchResultOut]
    match_rate: float = Field(..., alias="matchRate", description="Matched share in percent")


__all__ = ["SearchRequest", "SearchResponse", "SearchResultOut", "SongIn"]
