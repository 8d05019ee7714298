"""Bounded-concurrency FIFO dispatcher for oracle calls.

At most ``concurrency`` jobs run at once; the rest wait in enqueue order.
Each running job gets its own timeout, measured from the moment it starts,
and is cancelled when the timeout fires. Jobs sharing a fingerprint are
coalesced: while one is queued or running, later callers await the same
result instead of issuing another call.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from .exceptions import OracleError, QueueTimeout


class JobState(str, Enum):
    """Lifecycle of one dispatched job."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(eq=False)
class QueueJob:
    """Work item owned by the dispatcher until it settles."""

    fingerprint: str
    execute: Callable[[], Awaitable[Any]]
    enqueued_at: float
    future: asyncio.Future = field(repr=False)
    state: JobState = JobState.PENDING
    started_at: float | None = None


def _consume_exception(future: asyncio.Future) -> None:
    # Waiters may all be gone; retrieve the error so asyncio does not warn.
    if not future.cancelled():
        future.exception()


class Dispatcher:
    """Runs submitted jobs under a concurrency bound and per-job timeout."""

    def __init__(self, concurrency: int = 3, timeout: float = 60.0) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.concurrency = concurrency
        self.timeout = timeout
        self._waiting: deque[QueueJob] = deque()
        self._inflight: dict[str, QueueJob] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running = 0
        self.closed = False
        self.completed = 0
        self.failed = 0
        self.timed_out = 0
        self.coalesced = 0

    @property
    def size(self) -> int:
        """Number of jobs waiting to start."""
        return len(self._waiting)

    @property
    def pending(self) -> int:
        """Number of jobs currently running."""
        return self._running

    def position(self, fingerprint: str) -> int | None:
        """1-based place of a waiting job in the queue, None if not waiting."""
        for index, job in enumerate(self._waiting, start=1):
            if job.fingerprint == fingerprint:
                return index
        return None

    def in_flight(self, fingerprint: str) -> bool:
        return fingerprint in self._inflight

    async def enqueue(self, fingerprint: str, execute: Callable[[], Awaitable[Any]]) -> Any:
        """Submit a job and wait for its result.

        Args:
            fingerprint: Coalescing key; callers with the same key share one execution.
            execute: Zero-argument coroutine factory performing the actual call.

        Returns:
            Whatever ``execute`` returns.

        Raises:
            QueueTimeout: If the job ran longer than the configured timeout.
            OracleError: If the dispatcher has been shut down.

        """
        if self.closed:
            raise OracleError("Dispatcher is shut down", status_code=503)
        existing = self._inflight.get(fingerprint)
        if existing is not None:
            self.coalesced += 1
            logger.debug(f"Coalescing request {fingerprint[:16]}... onto in-flight job")
            return await asyncio.shield(existing.future)

        loop = asyncio.get_running_loop()
        job = QueueJob(
            fingerprint=fingerprint,
            execute=execute,
            enqueued_at=loop.time(),
            future=loop.create_future(),
        )
        job.future.add_done_callback(_consume_exception)
        self._inflight[fingerprint] = job
        self._waiting.append(job)
        self._drain()

        if job.state is JobState.PENDING:
            job.state = JobState.QUEUED
            logger.debug(
                f"Queued job {fingerprint[:16]}... (waiting={self.size}, running={self.pending})"
            )

        return await asyncio.shield(job.future)

    def _drain(self) -> None:
        while self._waiting and self._running < self.concurrency:
            job = self._waiting.popleft()
            if job.future.done():
                continue
            self._start(job)

    def _start(self, job: QueueJob) -> None:
        loop = asyncio.get_running_loop()
        self._running += 1
        job.state = JobState.RUNNING
        job.started_at = loop.time()
        task = loop.create_task(self._run(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job: QueueJob) -> None:
        try:
            result = await asyncio.wait_for(job.execute(), timeout=self.timeout)
        except TimeoutError:
            job.state = JobState.TIMED_OUT
            self.timed_out += 1
            logger.warning(f"Job {job.fingerprint[:16]}... timed out after {self.timeout:g}s")
            if not job.future.done():
                job.future.set_exception(QueueTimeout(self.timeout))
        except asyncio.CancelledError:
            job.state = JobState.FAILED
            if not job.future.done():
                job.future.cancel()
            raise
        except Exception as e:
            job.state = JobState.FAILED
            self.failed += 1
            if not job.future.done():
                job.future.set_exception(e)
        else:
            job.state = JobState.SUCCEEDED
            self.completed += 1
            if not job.future.done():
                job.future.set_result(result)
        finally:
            self._running -= 1
            if self._inflight.get(job.fingerprint) is job:
                del self._inflight[job.fingerprint]
            self._drain()

    def stats(self) -> dict[str, int]:
        return {
            "waiting": self.size,
            "running": self.pending,
            "completed": self.completed,
            "failed": self.failed,
            "timedOut": self.timed_out,
            "coalesced": self.coalesced,
        }

    async def shutdown(self) -> None:
        """Cancel waiting and running jobs; used on application shutdown."""
        self.closed = True
        while self._waiting:
            job = self._waiting.popleft()
            if not job.future.done():
                job.future.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        logger.info("Dispatcher shut down")
