"""Bounded-concurrency resolution of many track queries against the catalog."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, ClassVar, Protocol

import httpx

from trackmatch.config import AppConfig, DEFAULT_RESOLVER_CONCURRENCY, load_config
from trackmatch.core.catalog_client import CatalogClient
from trackmatch.core.errors import CatalogError, InvalidInputError
from trackmatch.core.types import (
    AuthError,
    CatalogItem,
    ClientError,
    MatchResult,
    Query,
    RateLimited,
    build_queries,
)
from trackmatch.logging import get_logger
from trackmatch.logging_events import log_event

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class TrackSearcher(Protocol):
    async def search_track(
        self, title: str, artist: str, *, sleep: Sleeper | None = None
    ) -> CatalogItem | None: ...


@dataclass(slots=True, frozen=True)
class ResultEvent:
    name: ClassVar[str] = "result"

    index: int
    result: MatchResult

    def to_payload(self) -> dict[str, Any]:
        item = self.result.item
        error = self.result.error
        return {
            "index": self.index,
            "result": {
                "title": self.result.query.title,
                "artist": self.result.query.artist,
                "state": self.result.state.value,
                "track": item.to_dict() if item is not None else None,
                "error": error.code if error is not None else None,
            },
        }


@dataclass(slots=True, frozen=True)
class CompleteEvent:
    name: ClassVar[str] = "complete"

    match_rate_percent: float
    matched_count: int
    total_count: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "matchRate": self.match_rate_percent,
            "matched": self.matched_count,
            "total": self.total_count,
        }


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    name: ClassVar[str] = "error"

    code: str
    message: str
    retry_after_seconds: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.retry_after_seconds is not None:
            payload["retryAfter"] = self.retry_after_seconds
        return payload


ResolutionEvent = ResultEvent | CompleteEvent | ErrorEvent


def match_rate(matched: int, total: int) -> float:
    """Percentage of matched queries; ``0.0`` for an empty batch."""

    if total <= 0:
        return 0.0
    return matched / total * 100.0


class _Interrupted(Exception):
    """Raised from a backoff sleep once the run was told to stop."""


@dataclass(slots=True, frozen=True)
class _Outcome:
    result: MatchResult
    error: Exception | None = None


_WORKER_DONE = object()


class ResolutionScheduler:
    """Resolve queries with at most ``concurrency`` catalog calls in flight.

    Workers pull from a FIFO queue of pending queries and report exactly one
    outcome per dequeued query on a single result channel; the consumer is
    the only place where results are aggregated. Completion order is not
    submission order, so batch results are re-sorted by index.
    """

    def __init__(
        self,
        client: TrackSearcher,
        *,
        concurrency: int = DEFAULT_RESOLVER_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            raise InvalidInputError("concurrency must be >= 1")
        self._client = client
        self._concurrency = int(concurrency)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    async def resolve(
        self,
        queries: Sequence[Query],
        *,
        concurrency: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[MatchResult]:
        """Resolve every query and return results ordered by index.

        Credential rejection stops the whole batch and re-raises the
        :class:`CatalogError`. Any other classified failure is recorded as a
        failed result for its query. A set ``cancel_event`` yields the
        results completed so far.
        """

        started = perf_counter()
        results: list[MatchResult] = []
        outcomes = self._outcomes(queries, concurrency, cancel_event)
        try:
            async for outcome in outcomes:
                error = outcome.error
                if isinstance(error, CatalogError) and isinstance(error.kind, AuthError):
                    raise error
                if error is not None and not isinstance(error, CatalogError):
                    raise error
                results.append(outcome.result)
        finally:
            await outcomes.aclose()

        results.sort(key=lambda result: result.query.index)
        matched = sum(1 for result in results if result.matched)
        failed = sum(1 for result in results if result.error is not None)
        log_event(
            logger,
            "resolver.batch.completed",
            total=len(queries),
            completed=len(results),
            matched=matched,
            failed=failed,
            cancelled=len(results) < len(queries),
            duration_ms=int((perf_counter() - started) * 1000),
        )
        return results

    async def stream(
        self,
        queries: Sequence[Query],
        *,
        concurrency: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[ResolutionEvent]:
        """Yield a result event per completed query, then one terminal event.

        The terminal event is :class:`CompleteEvent` when every query was
        delivered, or :class:`ErrorEvent` when the run was aborted by a
        fatal catalog failure or cancelled.
        """

        total = len(queries)
        delivered = 0
        matched = 0
        outcomes = self._outcomes(queries, concurrency, cancel_event)
        try:
            async for outcome in outcomes:
                error = outcome.error
                if error is None or (
                    isinstance(error, CatalogError) and isinstance(error.kind, ClientError)
                ):
                    delivered += 1
                    if outcome.result.matched:
                        matched += 1
                    yield ResultEvent(index=outcome.result.query.index, result=outcome.result)
                    continue

                event = _abort_event(error)
                log_event(
                    logger,
                    "resolver.stream.aborted",
                    level=logging.WARNING,
                    code=event.code,
                    delivered=delivered,
                    total=total,
                )
                yield event
                return
        finally:
            await outcomes.aclose()

        if delivered < total:
            log_event(
                logger,
                "resolver.stream.aborted",
                code="CANCELLED",
                delivered=delivered,
                total=total,
            )
            yield ErrorEvent(code="CANCELLED", message="Resolution was cancelled")
            return

        yield CompleteEvent(
            match_rate_percent=match_rate(matched, total),
            matched_count=matched,
            total_count=total,
        )

    async def _outcomes(
        self,
        queries: Sequence[Query],
        concurrency: int | None,
        cancel_event: asyncio.Event | None,
    ) -> AsyncIterator[_Outcome]:
        limit = self._concurrency if concurrency is None else int(concurrency)
        if limit < 1:
            raise InvalidInputError("concurrency must be >= 1")
        if not queries:
            return

        pending: asyncio.Queue[Query] = asyncio.Queue()
        for query in queries:
            pending.put_nowait(query)
        channel: asyncio.Queue[Any] = asyncio.Queue()
        stop = asyncio.Event()

        def should_stop() -> bool:
            return stop.is_set() or (cancel_event is not None and cancel_event.is_set())

        worker_count = min(limit, len(queries))
        workers = [
            asyncio.create_task(
                self._worker(pending, channel, stop, should_stop),
                name=f"resolver-worker-{number}",
            )
            for number in range(worker_count)
        ]
        bridge: asyncio.Task[None] | None = None
        if cancel_event is not None:
            bridge = asyncio.create_task(_bridge_cancel(cancel_event, stop))

        finished = 0
        drained = False
        try:
            while finished < worker_count:
                entry = await channel.get()
                if entry is _WORKER_DONE:
                    finished += 1
                    continue
                # Entries queued before the stop signal are dropped too.
                if should_stop():
                    continue
                yield entry
            drained = True
        finally:
            stop.set()
            if not drained:
                for worker in workers:
                    worker.cancel()
            if bridge is not None:
                bridge.cancel()
            tasks: list[asyncio.Task[None]] = list(workers)
            if bridge is not None:
                tasks.append(bridge)
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _worker(
        self,
        pending: asyncio.Queue[Query],
        channel: asyncio.Queue[Any],
        stop: asyncio.Event,
        should_stop: Callable[[], bool],
    ) -> None:
        try:
            while not should_stop():
                try:
                    query = pending.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcome = await self._resolve_one(query, stop, should_stop)
                # Results landing after the stop signal are dropped.
                if outcome is None or should_stop():
                    return
                channel.put_nowait(outcome)
        finally:
            channel.put_nowait(_WORKER_DONE)

    async def _resolve_one(
        self,
        query: Query,
        stop: asyncio.Event,
        should_stop: Callable[[], bool],
    ) -> _Outcome | None:
        async def interruptible_sleep(seconds: float) -> None:
            if should_stop():
                raise _Interrupted()
            try:
                await asyncio.wait_for(stop.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
            raise _Interrupted()

        try:
            item = await self._client.search_track(
                query.title, query.artist, sleep=interruptible_sleep
            )
        except _Interrupted:
            return None
        except CatalogError as exc:
            return _Outcome(result=MatchResult(query=query, error=exc.kind), error=exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Unexpected failure resolving query %s", query.index)
            return _Outcome(result=MatchResult(query=query), error=exc)
        return _Outcome(result=MatchResult(query=query, item=item))


async def _bridge_cancel(cancel_event: asyncio.Event, stop: asyncio.Event) -> None:
    await cancel_event.wait()
    stop.set()


def _abort_event(error: Exception) -> ErrorEvent:
    if isinstance(error, CatalogError):
        if isinstance(error.kind, AuthError):
            return ErrorEvent(code="AUTH_ERROR", message=error.message)
        if isinstance(error.kind, RateLimited):
            return ErrorEvent(
                code="RATE_LIMIT",
                message=error.message,
                retry_after_seconds=error.retry_after_seconds,
            )
        return ErrorEvent(code="CATALOG_ERROR", message=error.message)
    return ErrorEvent(code="UNKNOWN_ERROR", message="An unexpected error occurred")


async def resolve_tracks(
    pairs: Iterable[tuple[str, str]],
    credential: str,
    concurrency: int | None = None,
    *,
    config: AppConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    cancel_event: asyncio.Event | None = None,
) -> list[MatchResult]:
    """Resolve ``(title, artist)`` pairs with a one-off client and scheduler."""

    app_config = config or load_config()
    queries = build_queries(pairs)
    async with CatalogClient.from_config(
        credential, app_config, transport=transport
    ) as client:
        scheduler = ResolutionScheduler(
            client,
            concurrency=concurrency or app_config.resolver.concurrency,
        )
        return await scheduler.resolve(queries, cancel_event=cancel_event)


__all__ = [
    "CompleteEvent",
    "ErrorEvent",
    "ResolutionEvent",
    "ResolutionScheduler",
    "ResultEvent",
    "TrackSearcher",
    "match_rate",
    "resolve_tracks",
]
