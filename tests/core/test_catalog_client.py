from email.utils import format_datetime
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from trackmatch.config import BackoffConfig
from trackmatch.core.catalog_client import CatalogClient, parse_retry_after
from trackmatch.core.errors import CatalogError, InvalidInputError
from trackmatch.core.types import AuthError, ClientError, RateLimited, ServerError

from tests.helpers import search_body, track_payload

NO_JITTER = BackoffConfig(jitter_factor=0.0)


def _client(handler, *, sleep=None, **kwargs) -> CatalogClient:
    kwargs.setdefault("backoff", NO_JITTER)
    return CatalogClient(
        "token-123",
        base_url="https://catalog.test/v1",
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_search_track_sends_query_and_returns_first_match() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=search_body(
                track_payload("Yesterday", ["Cover Band"], track_id="cover"),
                track_payload("Yesterday - Remastered 2009", ["The Beatles"], track_id="orig"),
            ),
        )

    async with _client(handler) as client:
        item = await client.search_track("Yesterday", "The Beatles")

    assert item is not None
    assert item.id == "orig"
    assert item.artist_names == ("The Beatles",)
    assert item.album is not None and item.album.images[0].width == 640

    request = seen[0]
    assert request.url.path == "/v1/search"
    assert request.url.params["q"] == "track:Yesterday artist:The Beatles"
    assert request.url.params["type"] == "track"
    assert request.url.params["limit"] == "10"
    assert request.headers["Authorization"] == "Bearer token-123"


@pytest.mark.asyncio
async def test_search_track_returns_none_without_acceptable_candidate() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=search_body(track_payload("Help!", ["The Beatles"])))

    async with _client(handler) as client:
        assert await client.search_track("Yesterday", "The Beatles") is None


@pytest.mark.asyncio
async def test_search_tracks_tolerates_missing_items() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"albums": {}})

    async with _client(handler, search_limit=3) as client:
        assert await client.search_tracks("a", "b") == []


@pytest.mark.asyncio
async def test_no_content_decodes_to_empty_mapping() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    async with _client(handler) as client:
        assert await client.get_json("/me/tracks") == {}


@pytest.mark.asyncio
async def test_unauthorised_is_terminal(recording_sleep) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(401, json={"error": {"status": 401, "message": "expired"}})

    async with _client(handler, sleep=recording_sleep) as client:
        with pytest.raises(CatalogError) as excinfo:
            await client.search_track("Yesterday", "The Beatles")

    assert isinstance(excinfo.value.kind, AuthError)
    assert len(calls) == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after_hint(recording_sleep) -> None:
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(200, json=search_body(track_payload("Yesterday", ["The Beatles"]))),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    async with _client(handler, sleep=recording_sleep) as client:
        item = await client.search_track("Yesterday", "The Beatles")

    assert item is not None
    assert recording_sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_exhausted_rate_limit_keeps_hint(recording_sleep) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "7"})

    backoff = BackoffConfig(max_retries=1, jitter_factor=0.0)
    async with _client(handler, sleep=recording_sleep, backoff=backoff) as client:
        with pytest.raises(CatalogError) as excinfo:
            await client.search_tracks("a", "b")

    assert excinfo.value.kind == RateLimited(retry_after_seconds=7)
    assert excinfo.value.retry_after_seconds == 7
    assert recording_sleep.delays == [7.0]


@pytest.mark.asyncio
async def test_server_errors_are_retried_with_exponential_backoff(recording_sleep) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503, json={"error": {"message": "unavailable"}})

    async with _client(handler, sleep=recording_sleep) as client:
        with pytest.raises(CatalogError) as excinfo:
            await client.search_tracks("a", "b")

    assert len(calls) == 4
    assert recording_sleep.delays == [1.0, 2.0, 4.0]
    assert excinfo.value.kind == ServerError(status_code=503)
    assert excinfo.value.attempts == 4
    assert excinfo.value.message == "unavailable"
    assert excinfo.value.args == ("unavailable",)
    assert excinfo.value.__cause__ is None


@pytest.mark.asyncio
async def test_client_errors_use_provider_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"status": 400, "message": "No search query"}})

    async with _client(handler) as client:
        with pytest.raises(CatalogError) as excinfo:
            await client.search_tracks("a", "b")

    assert excinfo.value.kind == ClientError(status_code=400)
    assert excinfo.value.message == "No search query"


@pytest.mark.asyncio
async def test_error_message_falls_back_to_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not json")

    async with _client(handler) as client:
        with pytest.raises(CatalogError) as excinfo:
            await client.search_tracks("a", "b")

    assert excinfo.value.message == "Catalog API error: 404"


@pytest.mark.asyncio
async def test_transport_failures_are_retried(recording_sleep) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=search_body())

    async with _client(handler, sleep=recording_sleep) as client:
        assert await client.search_tracks("a", "b") == []

    assert len(calls) == 2
    assert recording_sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_disabled_retries_fail_on_first_attempt(recording_sleep) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(500)

    async with _client(handler, sleep=recording_sleep, enable_retries=False) as client:
        with pytest.raises(CatalogError) as excinfo:
            await client.search_tracks("a", "b")

    assert len(calls) == 1
    assert excinfo.value.message == "Catalog API error: 500"


@pytest.mark.asyncio
async def test_per_call_sleep_overrides_instance_sleep(recording_sleep) -> None:
    responses = iter([httpx.Response(500), httpx.Response(200, json=search_body())])
    per_call: list[float] = []

    async def call_sleep(seconds: float) -> None:
        per_call.append(seconds)

    async with _client(lambda request: next(responses), sleep=recording_sleep) as client:
        await client.search_tracks("a", "b", sleep=call_sleep)

    assert per_call == [1.0]
    assert recording_sleep.delays == []


def test_access_token_is_required() -> None:
    with pytest.raises(InvalidInputError):
        CatalogClient("   ")


def test_parse_retry_after_variants() -> None:
    assert parse_retry_after("5") == 5
    assert parse_retry_after(" 0 ") == 0
    assert parse_retry_after(None) is None
    assert parse_retry_after("") is None
    assert parse_retry_after("soon") is None

    past = format_datetime(datetime.now(UTC) - timedelta(minutes=5), usegmt=True)
    assert parse_retry_after(past) == 0

    future = format_datetime(datetime.now(UTC) + timedelta(seconds=90), usegmt=True)
    assert 85 <= parse_retry_after(future) <= 91
