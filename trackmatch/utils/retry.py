"""Retry and backoff helpers for catalog calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import math
import random
from typing import Awaitable, Callable, TypeVar

from trackmatch.config import BackoffConfig
from trackmatch.core.errors import InvalidInputError
from trackmatch.core.types import ErrorKind
from trackmatch.logging import get_logger
from trackmatch.logging_events import log_event

T = TypeVar("T")

logger = get_logger(__name__)

AsyncFactory = Callable[[], Awaitable[T]]
Sleeper = Callable[[float], Awaitable[None]]
Classifier = Callable[[Exception], "ErrorKind | None"]

DEFAULT_BACKOFF = BackoffConfig()


@dataclass(frozen=True, slots=True)
class BackoffDecision:
    """Outcome of :func:`decide_backoff`."""

    should_retry: bool
    delay_ms: int
    attempt: int


def exp_backoff_delays(config: BackoffConfig, attempts: int) -> list[int]:
    """Return the nominal (jitter free) delays in milliseconds for ``attempts`` retries."""

    delays: list[int] = []
    for attempt in range(1, max(0, int(attempts)) + 1):
        delays.append(_capped_delay_ms(attempt, config))
    return delays


def _capped_delay_ms(attempt: int, config: BackoffConfig) -> int:
    base = max(0, int(config.base_delay_ms))
    ceiling = max(0, int(config.max_delay_ms))
    # Avoid building huge integers for absurd attempt numbers.
    exponent = min(attempt - 1, 62)
    return min(base * (2**exponent), ceiling)


def decide_backoff(
    attempt: int,
    kind: ErrorKind,
    retry_after_seconds: float | None = None,
    config: BackoffConfig | None = None,
    *,
    rand: Callable[[], float] = random.random,
) -> BackoffDecision:
    """Decide whether a failed attempt should be retried and after how long.

    ``attempt`` is 1-indexed: the first call that failed is attempt 1. Only
    rate limiting and server errors are retried, and only while ``attempt``
    does not exceed ``config.max_retries``. A positive provider hint wins over
    the exponential schedule; otherwise the delay doubles per attempt from
    ``base_delay_ms`` up to ``max_delay_ms`` with up to ``jitter_factor`` of
    uniform jitter on top. The returned delay never exceeds ``max_delay_ms``.
    """

    if attempt < 1:
        raise InvalidInputError("attempt must be >= 1")

    cfg = config or DEFAULT_BACKOFF
    if not kind.retryable or attempt > cfg.max_retries:
        return BackoffDecision(should_retry=False, delay_ms=0, attempt=attempt)

    ceiling = max(0, int(cfg.max_delay_ms))
    if retry_after_seconds is not None and retry_after_seconds > 0:
        delay_ms = min(int(math.ceil(retry_after_seconds * 1000)), ceiling)
        return BackoffDecision(should_retry=True, delay_ms=delay_ms, attempt=attempt)

    capped = _capped_delay_ms(attempt, cfg)
    jitter = capped * max(0.0, float(cfg.jitter_factor)) * rand()
    delay_ms = min(int(math.floor(capped + jitter)), ceiling)
    return BackoffDecision(should_retry=True, delay_ms=max(0, delay_ms), attempt=attempt)


async def with_backoff(
    async_fn: AsyncFactory[T],
    *,
    classify: Classifier,
    config: BackoffConfig | None = None,
    sleep: Sleeper | None = None,
    event: str = "retry.scheduled",
) -> T:
    """Execute ``async_fn`` retrying failures that ``classify`` maps to a retryable kind.

    Exceptions that classify to ``None`` or to a non-retryable kind, and the
    last exception once the budget is spent, propagate unchanged.
    """

    cfg = config or DEFAULT_BACKOFF
    sleeper = sleep or asyncio.sleep
    attempt = 1
    while True:
        try:
            return await async_fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            kind = classify(exc)
            if kind is None:
                raise
            decision = decide_backoff(
                attempt,
                kind,
                getattr(kind, "retry_after_seconds", None),
                cfg,
            )
            if not decision.should_retry:
                raise
            log_event(
                logger,
                event,
                level=logging.WARNING,
                code=kind.code,
                attempt=attempt,
                delay_ms=decision.delay_ms,
            )
            if decision.delay_ms > 0:
                await sleeper(decision.delay_ms / 1000.0)
            attempt += 1


__all__ = [
    "BackoffDecision",
    "decide_backoff",
    "exp_backoff_delays",
    "with_backoff",
]
