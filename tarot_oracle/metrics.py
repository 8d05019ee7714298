"""Request and cache bookkeeping behind ``GET /status``."""

import asyncio
import time
from collections.abc import Callable
from typing import Any

from loguru import logger

from .cache import ResponseCache
from .dispatcher import Dispatcher


class Metrics:
    """Counters owned by one application instance."""

    def __init__(
        self,
        cache: ResponseCache,
        dispatcher: Dispatcher,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.dispatcher = dispatcher
        self._clock = clock
        self.started_at = clock()
        self.total_requests = 0
        self.oracle_calls = 0
        self.oracle_failures = 0
        self.no_output = 0

    def record_request(self) -> None:
        self.total_requests += 1

    def record_oracle_call(self, success: bool, no_output: bool = False) -> None:
        self.oracle_calls += 1
        if not success:
            self.oracle_failures += 1
        if no_output:
            self.no_output += 1

    @property
    def uptime_seconds(self) -> float:
        return round(self._clock() - self.started_at, 3)

    def snapshot(self) -> dict[str, Any]:
        """Status payload; reading it never changes any state."""
        return {
            "uptime_seconds": self.uptime_seconds,
            "total_requests": self.total_requests,
            "cache_hits": self.cache.hits,
            "cache_misses": self.cache.misses,
            "cache_hit_rate": self.cache.hit_rate,
            "queue_waiting": self.dispatcher.size,
            "queue_pending": self.dispatcher.pending,
            "cache_size": self.cache.size(),
            "cache_capacity": self.cache.capacity(),
        }

    def log_snapshot(self) -> None:
        logger.info(
            f"Stats: requests={self.total_requests} "
            f"queue waiting={self.dispatcher.size} running={self.dispatcher.pending} "
            f"cache size={self.cache.size()}/{self.cache.capacity()} "
            f"hit_rate={self.cache.hit_rate:.2%} "
            f"oracle calls={self.oracle_calls} failures={self.oracle_failures} "
            f"coalesced={self.dispatcher.coalesced}"
        )

    async def log_periodically(self, interval: float) -> None:
        """Log a snapshot every ``interval`` seconds and purge expired cache entries."""
        while True:
            await asyncio.sleep(interval)
            purged = self.cache.purge_expired()
            if purged:
                logger.debug(f"Purged {purged} expired cache entries")
            self.log_snapshot()
