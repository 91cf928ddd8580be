"""
Pacing of upstream requests.

Every crawler loop calls ``await throttle.wait(kind)`` between upstream calls.
The implementation decides how long that pause is:

- FixedDelayThrottle: a fixed pause per kind ("page", "project", "detail", ...)
- TokenBucketThrottle: a global request rate with bursts, kind ignored
- NoDelayThrottle: no pauses at all (tests)

All throttles honor an optional cancellation event: a pause is interrupted as
soon as the event is set and OperationCancelled is raised.
"""

import asyncio
import time
from typing import Callable

from ado_insights.errors import OperationCancelled


class Throttle:
    """Base class for request pacing with cooperative cancellation."""

    def __init__(self, cancel_event: asyncio.Event | None = None):
        self.cancel_event = cancel_event

    def check_cancelled(self) -> None:
        """Raise OperationCancelled if the caller asked to stop."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelled("Operation cancelled by caller")

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds``, waking early (and raising) on cancellation."""
        self.check_cancelled()
        if seconds <= 0:
            return
        if self.cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise OperationCancelled("Operation cancelled by caller")

    async def wait(self, kind: str = "request") -> None:
        """Pause before the next upstream call of the given kind."""
        raise NotImplementedError

    def with_cancel_event(self, cancel_event: asyncio.Event | None) -> "Throttle":
        """Return a throttle with the same policy bound to ``cancel_event``."""
        raise NotImplementedError


class NoDelayThrottle(Throttle):
    """Never pauses; still honors cancellation."""

    async def wait(self, kind: str = "request") -> None:
        self.check_cancelled()

    async def sleep(self, seconds: float) -> None:
        self.check_cancelled()

    def with_cancel_event(self, cancel_event: asyncio.Event | None) -> "NoDelayThrottle":
        return NoDelayThrottle(cancel_event)


class FixedDelayThrottle(Throttle):
    """Pause a fixed duration per call kind."""

    def __init__(
        self,
        delays: dict[str, float],
        default_delay: float = 0.1,
        cancel_event: asyncio.Event | None = None,
    ):
        super().__init__(cancel_event)
        self.delays = dict(delays)
        self.default_delay = default_delay

    async def wait(self, kind: str = "request") -> None:
        await self.sleep(self.delays.get(kind, self.default_delay))

    def with_cancel_event(
        self, cancel_event: asyncio.Event | None
    ) -> "FixedDelayThrottle":
        return FixedDelayThrottle(self.delays, self.default_delay, cancel_event)


class TokenBucketThrottle(Throttle):
    """
    Token bucket limiter shared by every call kind.

    Args:
        rate: Tokens added per second.
        capacity: Maximum burst size.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(cancel_event)
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = max(1, capacity)
        self.clock = clock
        self._tokens = float(self.capacity)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated_at = now

    async def wait(self, kind: str = "request") -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                await self.sleep((1 - self._tokens) / self.rate)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1)

    def with_cancel_event(
        self, cancel_event: asyncio.Event | None
    ) -> "TokenBucketThrottle":
        return TokenBucketThrottle(self.rate, self.capacity, cancel_event, self.clock)
