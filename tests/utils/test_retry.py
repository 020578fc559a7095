import pytest

from trackmatch.config import BackoffConfig
from trackmatch.core.errors import CatalogError, InvalidInputError
from trackmatch.core.types import AuthError, ClientError, RateLimited, ServerError
from trackmatch.utils.retry import decide_backoff, exp_backoff_delays, with_backoff

NO_JITTER = BackoffConfig(jitter_factor=0.0)


def test_exp_backoff_delays_are_capped() -> None:
    config = BackoffConfig(base_delay_ms=100, max_delay_ms=500)
    assert exp_backoff_delays(config, 4) == [100, 200, 400, 500]
    assert exp_backoff_delays(config, 0) == []


def test_decide_backoff_doubles_until_budget_is_spent() -> None:
    kind = ServerError(status_code=503)
    decisions = [decide_backoff(attempt, kind, config=NO_JITTER) for attempt in (1, 2, 3, 4)]

    assert [(d.should_retry, d.delay_ms) for d in decisions] == [
        (True, 1000),
        (True, 2000),
        (True, 4000),
        (False, 0),
    ]


def test_decide_backoff_never_retries_terminal_kinds() -> None:
    assert not decide_backoff(1, AuthError()).should_retry
    decision = decide_backoff(1, ClientError(status_code=404))
    assert (decision.should_retry, decision.delay_ms) == (False, 0)


def test_decide_backoff_prefers_provider_hint() -> None:
    decision = decide_backoff(1, RateLimited(5), 5, BackoffConfig(), rand=lambda: 1.0)
    assert decision.should_retry
    assert decision.delay_ms == 5000


def test_decide_backoff_clamps_provider_hint() -> None:
    decision = decide_backoff(2, RateLimited(120), 120, BackoffConfig())
    assert decision.delay_ms == 30_000


def test_decide_backoff_applies_jitter_on_top_of_nominal_delay() -> None:
    config = BackoffConfig(jitter_factor=0.1)
    assert decide_backoff(1, ServerError(500), config=config, rand=lambda: 0.0).delay_ms == 1000
    assert decide_backoff(1, ServerError(500), config=config, rand=lambda: 0.5).delay_ms == 1050
    assert decide_backoff(1, ServerError(500), config=config, rand=lambda: 1.0).delay_ms == 1100


def test_decide_backoff_total_delay_never_exceeds_maximum() -> None:
    config = BackoffConfig(base_delay_ms=1000, max_delay_ms=1500, jitter_factor=0.5)
    decision = decide_backoff(2, ServerError(500), config=config, rand=lambda: 1.0)
    assert decision.delay_ms == 1500


def test_decide_backoff_rejects_non_positive_attempts() -> None:
    with pytest.raises(InvalidInputError):
        decide_backoff(0, ServerError(500))


def _classify(exc: Exception):
    if isinstance(exc, CatalogError):
        return exc.kind
    return None


@pytest.mark.asyncio
async def test_with_backoff_retries_until_success(recording_sleep) -> None:
    calls: list[int] = []

    async def operation() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise CatalogError(ServerError(502), "bad gateway")
        return "ok"

    result = await with_backoff(
        operation, classify=_classify, config=NO_JITTER, sleep=recording_sleep
    )

    assert result == "ok"
    assert len(calls) == 3
    assert recording_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_with_backoff_raises_last_error_when_exhausted(recording_sleep) -> None:
    calls: list[int] = []
    config = BackoffConfig(max_retries=2, base_delay_ms=10, jitter_factor=0.0)

    async def operation() -> str:
        calls.append(1)
        raise CatalogError(ServerError(500), f"failure {len(calls)}")

    with pytest.raises(CatalogError) as excinfo:
        await with_backoff(operation, classify=_classify, config=config, sleep=recording_sleep)

    assert len(calls) == 3
    assert str(excinfo.value) == "failure 3"
    assert recording_sleep.delays == [0.01, 0.02]


@pytest.mark.asyncio
async def test_with_backoff_propagates_terminal_errors_unchanged(recording_sleep) -> None:
    error = CatalogError(AuthError(), "expired")

    async def operation() -> str:
        raise error

    with pytest.raises(CatalogError) as excinfo:
        await with_backoff(operation, classify=_classify, sleep=recording_sleep)

    assert excinfo.value is error
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_with_backoff_does_not_touch_unclassified_errors(recording_sleep) -> None:
    async def operation() -> str:
        raise KeyError("boom")

    with pytest.raises(KeyError):
        await with_backoff(operation, classify=_classify, sleep=recording_sleep)
    assert recording_sleep.delays == []
