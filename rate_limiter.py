import asyncio
import time
from typing import Awaitable, Callable, Optional


class RateLimiter:
    """
    Spaces out request starts for one client instance.

    Each acquire() returns at least 1 / requests_per_second seconds after
    the previous one returned. Waiting callers hold the lock, so they are
    released one at a time in the order they arrived. There is no burst
    allowance after idle periods.
    """

    def __init__(
        self,
        requests_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.min_interval = 1.0 / requests_per_second
        self.last_request: Optional[float] = None
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            if self.last_request is not None:
                elapsed = self._clock() - self.last_request
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self.last_request = self._clock()
