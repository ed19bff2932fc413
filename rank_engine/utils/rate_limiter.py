"""Request pacing: a per-minute window for the LLM and a minimum-interval gate for SERP calls."""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

_WINDOW_SECONDS = 60.0


class RateLimiter:
    """At most ``requests_per_minute`` acquisitions in any rolling minute.

    Usage::

        limiter = RateLimiter(requests_per_minute=30, name="openai")
        async with limiter:
            await call_api()
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self._rpm = requests_per_minute
        self._name = name
        self._clock = clock
        self._sleep = sleep
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= _WINDOW_SECONDS:
            self._stamps.popleft()

    async def acquire(self) -> None:
        async with self._lock:
            self._expire(self._clock())
            while len(self._stamps) >= self._rpm:
                wait = _WINDOW_SECONDS - (self._clock() - self._stamps[0])
                logger.debug("RateLimiter(%s) full, sleeping %.2fs", self._name, wait)
                await self._sleep(max(wait, 0.0))
                self._expire(self._clock())
            self._stamps.append(self._clock())

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def requests_in_last_minute(self) -> int:
        self._expire(self._clock())
        return len(self._stamps)


class PacingGate:
    """Minimum-interval gate keyed by a global and a per-caller timestamp.

    A call to :meth:`wait` returns once at least ``global_interval`` seconds
    have passed since the last call by anyone *and* ``caller_interval``
    seconds since the last call by the same caller.  The clock and sleep
    function are injectable so tests can run without real delays.

    Usage::

        gate = PacingGate(global_interval=1.0, caller_interval=30.0)
        await gate.wait("incremental-provider")
    """

    def __init__(
        self,
        global_interval: float = 0.0,
        caller_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._global_interval = global_interval
        self._caller_interval = caller_interval
        self._clock = clock
        self._sleep = sleep
        self._last_global: Optional[float] = None
        self._last_by_caller: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def time_until_allowed(self, caller: str = "default") -> float:
        """Seconds the given caller still has to wait (0 when clear)."""
        now = self._clock()
        wait = 0.0
        if self._last_global is not None:
            wait = max(wait, self._global_interval - (now - self._last_global))
        last_caller = self._last_by_caller.get(caller)
        if last_caller is not None:
            wait = max(wait, self._caller_interval - (now - last_caller))
        return max(wait, 0.0)

    async def wait(self, caller: str = "default") -> float:
        """Block until ``caller`` may proceed, then stamp the call.

        Returns:
            Seconds slept.
        """
        async with self._lock:
            wait = self.time_until_allowed(caller)
            if wait > 0:
                logger.debug("PacingGate sleeping %.2fs for %s", wait, caller)
                await self._sleep(wait)
            now = self._clock()
            self._last_global = now
            self._last_by_caller[caller] = now
            return wait

    def reset(self) -> None:
        self._last_global = None
        self._last_by_caller.clear()
