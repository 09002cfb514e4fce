import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("trend_sweep.rate_limiter")


class RateLimiter:
    """
    Spaces outgoing requests at least ``min_interval`` seconds apart.

    The spacing is derived from the upstream's per-minute weight budget:
    ``60 * safety_factor / weight_per_minute``. Every caller reserves the next
    free slot before suspending, so callers that race in the same tick are
    queued one interval apart instead of firing together.
    """

    def __init__(
        self,
        weight_per_minute: int = 1200,
        safety_factor: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if weight_per_minute <= 0:
            raise ValueError("weight_per_minute must be > 0")
        if safety_factor <= 0:
            raise ValueError("safety_factor must be > 0")
        self.min_interval = 60.0 * safety_factor / weight_per_minute
        self._clock = clock
        self._sleep = sleep
        self._last_request = float("-inf")
        self.total_waits = 0
        self.total_wait_time = 0.0

    async def wait(self) -> None:
        now = self._clock()
        slot = max(now, self._last_request + self.min_interval)
        self._last_request = slot
        delay = slot - now
        if delay > 0:
            self.total_waits += 1
            self.total_wait_time += delay
            logger.debug(f"Pacing request for {delay * 1000:.0f}ms")
            await self._sleep(delay)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_waits": self.total_waits,
            "total_wait_time_seconds": round(self.total_wait_time, 2),
            "min_interval_ms": round(self.min_interval * 1000, 1),
        }
