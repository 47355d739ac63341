"""Rate-limited gateway for every outbound data-source call.

One ``RateLimitedCollector`` is created per process and injected wherever an
external source is called. It enforces two limits at once:

* at most ``max_concurrency`` calls in flight, and
* at least ``min_interval`` seconds between the start of any two calls.

A caller takes a permit first, then waits out the remainder of the interval
since the previous call start, records its own start time and only releases
the permit once its call has finished. The wait-and-record step is serialised
so that permit holders cannot all observe the same "last call" time and start
together.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog

from compass.errors import SourceClientError

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 2
DEFAULT_MIN_INTERVAL_SECONDS = 2.0


class RateLimitedCollector:
    """Bounded-concurrency, minimum-interval throttle shared process-wide."""

    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        min_interval: float = DEFAULT_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self.max_concurrency = max_concurrency
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._permits = asyncio.Semaphore(max_concurrency)
        self._pacing = asyncio.Lock()
        self._last_call_started: float | None = None
        self.calls_started = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def _wait_for_slot(self) -> None:
        async with self._pacing:
            if self._last_call_started is not None:
                elapsed = self._clock() - self._last_call_started
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_call_started = self._clock()

    async def fetch(
        self,
        source: str,
        call: Callable[..., Awaitable[T]],
        *args: Any,
        empty: Callable[[], T] = list,  # type: ignore[assignment]
        **kwargs: Any,
    ) -> T:
        """Invoke ``call`` under the process-wide limits.

        A non-success response from the source yields ``empty()`` and a
        warning; it is not retried here.
        """
        async with self._permits:
            await self._wait_for_slot()
            self.calls_started += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                return await call(*args, **kwargs)
            except (SourceClientError, httpx.HTTPError) as exc:
                logger.warning("source_call_failed", source=source, error=str(exc))
                return empty()
            finally:
                self.in_flight -= 1
