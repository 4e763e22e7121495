"""Token bucket rate limiter for outbound messages."""

import asyncio
import time
from typing import Callable, Optional


class RateLimiter:
    """Admit at most one send per `interval` seconds, with bursts up to `burst`.

    Waiters are served one at a time in arrival order.
    """

    def __init__(
        self,
        interval: float = 1.0,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")

        self.interval = interval
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.burst), self._tokens + elapsed / self.interval)
        self._updated = now

    def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    async def wait(self, cancel: Optional[asyncio.Event] = None) -> bool:
        """Block until a token is available.

        Args:
            cancel: Optional event; setting it abandons the wait

        Returns:
            True when admitted, False if `cancel` was set first
        """
        async with self._lock:
            while True:
                if cancel is not None and cancel.is_set():
                    return False

                if self.try_acquire():
                    return True

                delay = (1.0 - self._tokens) * self.interval
                if cancel is None:
                    await asyncio.sleep(delay)
                    continue

                try:
                    await asyncio.wait_for(cancel.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    continue
                return False
