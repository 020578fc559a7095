"""Per-identity token bucket store with idle-entry sweeping."""

from __future__ import annotations

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from trackmatch.config import (
    DEFAULT_RATE_LIMIT_MAX_IDLE_MS,
    DEFAULT_RATE_LIMIT_SWEEP_INTERVAL_MS,
    RateLimitConfig,
)
from trackmatch.core.errors import InvalidInputError
from trackmatch.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class RateLimitBucket:
    tokens: float
    last_refill_ms: float
    capacity: int
    window_ms: int

    def refill(self, *, now_ms: float) -> None:
        elapsed = max(0.0, now_ms - self.last_refill_ms)
        rate = self.capacity / float(self.window_ms)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * rate)
        self.last_refill_ms = now_ms


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None = None


class RateLimitStore:
    """Token buckets keyed by caller identity.

    ``check`` refills continuously (fractional tokens accrue between calls)
    and consumes one token when at least one is available. Entries idle for
    longer than ``max(max_idle_ms, 2 * window_ms)`` are removed by
    :meth:`sweep`, which runs opportunistically from ``check`` once per
    ``sweep_interval_ms`` and periodically once :meth:`start` was awaited.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_ms: int = DEFAULT_RATE_LIMIT_SWEEP_INTERVAL_MS,
        max_idle_ms: int = DEFAULT_RATE_LIMIT_MAX_IDLE_MS,
    ) -> None:
        self._clock = clock
        self._sweep_interval_ms = max(1, int(sweep_interval_ms))
        self._max_idle_ms = max(0, int(max_idle_ms))
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()
        self._last_sweep_ms = self._now_ms()
        self._sweeper: asyncio.Task[None] | None = None

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._buckets

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Consume one token for ``identifier`` if available."""

        if config.capacity < 1 or config.window_ms < 1:
            raise InvalidInputError("rate limit capacity and window must be positive")

        now = self._now_ms()
        reset_at = int(now + config.window_ms)
        with self._lock:
            self._maybe_sweep_locked(now)
            bucket = self._buckets.get(identifier)
            if bucket is None:
                bucket = RateLimitBucket(
                    tokens=float(config.capacity - 1),
                    last_refill_ms=now,
                    capacity=config.capacity,
                    window_ms=config.window_ms,
                )
                self._buckets[identifier] = bucket
                return RateLimitResult(
                    allowed=True,
                    remaining=config.capacity - 1,
                    reset_at_ms=reset_at,
                )

            bucket.capacity = config.capacity
            bucket.window_ms = config.window_ms
            bucket.refill(now_ms=now)

            if bucket.tokens < 1.0:
                retry_after = math.ceil((1.0 - bucket.tokens) / config.refill_per_ms / 1000.0)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at_ms=reset_at,
                    retry_after_seconds=max(1, retry_after),
                )

            bucket.tokens -= 1.0
            return RateLimitResult(
                allowed=True,
                remaining=int(math.floor(bucket.tokens)),
                reset_at_ms=reset_at,
            )

    def sweep(self, now_ms: float | None = None) -> int:
        """Drop idle buckets and return how many were removed."""

        now = self._now_ms() if now_ms is None else float(now_ms)
        with self._lock:
            return self._sweep_locked(now)

    def _maybe_sweep_locked(self, now: float) -> None:
        if now - self._last_sweep_ms < self._sweep_interval_ms:
            return
        self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        self._last_sweep_ms = now
        stale = [
            key
            for key, bucket in self._buckets.items()
            if now - bucket.last_refill_ms > max(self._max_idle_ms, 2 * bucket.window_ms)
        ]
        for key in stale:
            del self._buckets[key]
        if stale:
            logger.debug("Swept %d idle rate limit entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()

    async def start(self) -> None:
        """Start the periodic sweeper on the running event loop."""

        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._run_sweeper(), name="rate-limit-sweeper")

    async def _run_sweeper(self) -> None:
        interval = self._sweep_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    async def aclose(self) -> None:
        """Stop the sweeper and drop all state."""

        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        self.clear()


__all__ = ["RateLimitBucket", "RateLimitResult", "RateLimitStore"]
