"""Per-client admission control with two independent sliding-window limiters.

Each identity keeps a log of admission timestamps. A request at time ``t``
is admitted only if fewer than ``limit`` admissions fall inside
``(t - window, t]``, so no identity can exceed its cap inside any window.
Denied requests are not recorded. All operations are synchronous, which keeps
every check-and-increment atomic with respect to the event loop.
"""

import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from .config import Settings
from .exceptions import AdmissionDenied

SWEEP_EVERY = 1000


class LimiterKind(str, Enum):
    """Which budget a request is charged against."""

    GENERAL = "general"
    ORACLE = "oracle"


@dataclass(frozen=True)
class Admission:
    """Outcome of one admission check."""

    allowed: bool
    limit: int
    window: int
    remaining: int = 0
    retry_after: int = 0

    def __bool__(self) -> bool:
        return self.allowed


class SlidingWindowLimiter:
    """In-memory sliding-log limiter keyed by client identity."""

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize in-memory rate limiter."""
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self.requests: dict[str, deque[float]] = {}
        self._checks = 0

    def _prune(self, key: str, now: float) -> deque[float]:
        window_start = now - self.window_seconds
        events = self.requests.setdefault(key, deque())
        while events and events[0] <= window_start:
            events.popleft()
        return events

    def check_and_increment(self, key: str) -> Admission:
        """Admit and record the request if the identity still has budget."""
        now = self._clock()
        self._checks += 1
        if self._checks % SWEEP_EVERY == 0:
            self.sweep()

        events = self._prune(key, now)
        if len(events) >= self.limit:
            retry_after = max(1, math.ceil(events[0] + self.window_seconds - now))
            return Admission(
                allowed=False,
                limit=self.limit,
                window=self.window_seconds,
                retry_after=retry_after,
            )

        events.append(now)
        return Admission(
            allowed=True,
            limit=self.limit,
            window=self.window_seconds,
            remaining=self.limit - len(events),
        )

    def get_remaining(self, key: str) -> int:
        """Get remaining requests in current window."""
        if key not in self.requests:
            return self.limit
        return max(0, self.limit - len(self._prune(key, self._clock())))

    def reset(self, key: str) -> None:
        """Reset rate limit for a key."""
        self.requests.pop(key, None)

    def sweep(self) -> int:
        """Forget identities with no request left in the window."""
        now = self._clock()
        idle = [key for key in list(self.requests) if not self._prune(key, now)]
        for key in idle:
            del self.requests[key]
        return len(idle)


class AdmissionController:
    """Charges requests against the general and oracle limiters."""

    def __init__(
        self,
        general: SlidingWindowLimiter,
        oracle: SlidingWindowLimiter,
        queue_depth: Callable[[], int] | None = None,
    ) -> None:
        self.limiters = {LimiterKind.GENERAL: general, LimiterKind.ORACLE: oracle}
        self.queue_depth = queue_depth
        self.denied = {LimiterKind.GENERAL: 0, LimiterKind.ORACLE: 0}

    def admit(self, identity: str, kind: LimiterKind) -> Admission:
        """Check one request without raising."""
        admission = self.limiters[kind].check_and_increment(identity)
        if not admission:
            self.denied[kind] += 1
            logger.warning(
                f"Rate limit exceeded for {identity} on {kind.value} limiter "
                f"({admission.limit}/{admission.window}s), retry in {admission.retry_after}s"
            )
        return admission

    def check(self, identity: str, kind: LimiterKind) -> Admission:
        """Admit the request or raise AdmissionDenied.

        Raises:
            AdmissionDenied: Carrying the retry-after hint and current queue length.
        """
        admission = self.admit(identity, kind)
        if not admission:
            raise AdmissionDenied(
                limiter=kind.value,
                limit=admission.limit,
                window=admission.window,
                retry_after=admission.retry_after,
                queue_length=self.queue_depth() if self.queue_depth else None,
            )
        return admission

    def get_rate_limit_info(self, identity: str, kind: LimiterKind) -> dict[str, int]:
        """Get rate limit information for an identity."""
        limiter = self.limiters[kind]
        return {
            "limit": limiter.limit,
            "remaining": limiter.get_remaining(identity),
            "window_seconds": limiter.window_seconds,
        }

    def reset(self, identity: str) -> None:
        """Reset both limiters for an identity (admin function)."""
        for limiter in self.limiters.values():
            limiter.reset(identity)
        logger.info(f"Reset rate limits for {identity}")


def create_admission_controller(
    settings: Settings,
    queue_depth: Callable[[], int] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> AdmissionController:
    """Factory function to create the admission controller from configuration."""
    logger.info(
        f"Admission control: general {settings.general_rate_limit}/{settings.general_rate_window}s, "
        f"oracle {settings.oracle_rate_limit}/{settings.oracle_rate_window}s"
    )
    return AdmissionController(
        general=SlidingWindowLimiter(
            settings.general_rate_limit, settings.general_rate_window, clock=clock
        ),
        oracle=SlidingWindowLimiter(
            settings.oracle_rate_limit, settings.oracle_rate_window, clock=clock
        ),
        queue_depth=queue_depth,
    )
