"""Catalog search endpoints resolving candidate songs to catalog tracks."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
import json
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from trackmatch.config import AppConfig
from trackmatch.core.types import MatchResult, Query, build_queries
from trackmatch.dependencies import (
    CatalogClientFactory,
    get_catalog_client_factory,
    get_config,
)
from trackmatch.schemas import SearchRequest, SearchResponse, SearchResultOut, SongIn
from trackmatch.services.resolution import (
    ResolutionEvent,
    ResolutionScheduler,
    ResultEvent,
    match_rate,
)

router = APIRouter(tags=["Catalog"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _queries_for(songs: Sequence[SongIn]) -> list[Query]:
    return build_queries((song.title, song.artist) for song in songs)


def _result_out(song: SongIn, result: MatchResult) -> SearchResultOut:
    return SearchResultOut(
        song=song,
        track=result.item.to_dict() if result.item is not None else None,
        error=result.error.code if result.error is not None else None,
    )


def _format_sse(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


def _event_payload(event: ResolutionEvent, songs: Sequence[SongIn]) -> dict[str, Any]:
    if isinstance(event, ResultEvent):
        result = _result_out(songs[event.index], event.result).model_dump(mode="json")
        if result.get("error") is None:
            result.pop("error", None)
        return {"index": event.index, "result": result}
    return event.to_payload()


@router.post("/catalog/search", response_model=SearchResponse)
async def search_catalog(
    payload: SearchRequest,
    config: AppConfig = Depends(get_config),
    client_factory: CatalogClientFactory = Depends(get_catalog_client_factory),
) -> SearchResponse:
    queries = _queries_for(payload.songs)
    async with client_factory(payload.access_token) as client:
        scheduler = ResolutionScheduler(client, concurrency=config.resolver.concurrency)
        results = await scheduler.resolve(queries)

    matched = sum(1 for result in results if result.matched)
    return SearchResponse(
        results=[_result_out(payload.songs[result.query.index], result) for result in results],
        match_rate=match_rate(matched, len(results)),
    )


@router.post("/catalog/search/stream")
async def stream_catalog_search(
    payload: SearchRequest,
    config: AppConfig = Depends(get_config),
    client_factory: CatalogClientFactory = Depends(get_catalog_client_factory),
) -> StreamingResponse:
    songs = list(payload.songs)
    queries = _queries_for(songs)
    client = client_factory(payload.access_token)

    async def event_source() -> AsyncIterator[str]:
        cancel_event = asyncio.Event()
        scheduler = ResolutionScheduler(client, concurrency=config.resolver.concurrency)
        events = scheduler.stream(queries, cancel_event=cancel_event)
        try:
            async for event in events:
                yield _format_sse(event.name, _event_payload(event, songs))
        finally:
            # Reached early when the client disconnects mid-stream.
            cancel_event.set()
            await events.aclose()
            await client.aclose()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


__all__ = ["router"]
