"""Unit tests for the bounded FIFO dispatcher."""

import asyncio

import pytest

from tarot_oracle.dispatcher import Dispatcher
from tarot_oracle.exceptions import OracleError, QueueTimeout


@pytest.mark.asyncio
async def test_returns_job_result():
    dispatcher = Dispatcher(concurrency=2, timeout=1.0)

    async def job():
        return "answer"

    assert await dispatcher.enqueue("fp", job) == "answer"
    assert dispatcher.completed == 1
    assert not dispatcher.in_flight("fp")


@pytest.mark.asyncio
async def test_concurrency_never_exceeded():
    dispatcher = Dispatcher(concurrency=3, timeout=5.0)
    running = 0
    peak = 0

    def make_job():
        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1
            return "ok"

        return job

    results = await asyncio.gather(*(dispatcher.enqueue(f"fp{i}", make_job()) for i in range(10)))

    assert results == ["ok"] * 10
    assert peak == 3
    assert dispatcher.pending == 0
    assert dispatcher.size == 0


@pytest.mark.asyncio
async def test_jobs_start_in_fifo_order():
    dispatcher = Dispatcher(concurrency=1, timeout=5.0)
    started: list[int] = []

    def make_job(index):
        async def job():
            started.append(index)
            await asyncio.sleep(0)
            return index

        return job

    await asyncio.gather(*(dispatcher.enqueue(f"fp{i}", make_job(i)) for i in range(5)))

    assert started == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_size_pending_and_position():
    dispatcher = Dispatcher(concurrency=1, timeout=5.0)
    gate = asyncio.Event()

    async def blocked():
        await gate.wait()
        return "done"

    tasks = [asyncio.create_task(dispatcher.enqueue(f"fp{i}", blocked)) for i in range(3)]
    await asyncio.sleep(0)

    assert dispatcher.pending == 1
    assert dispatcher.size == 2
    assert dispatcher.position("fp0") is None
    assert dispatcher.position("fp2") == 2
    assert dispatcher.stats()["waiting"] == 2

    gate.set()
    assert await asyncio.gather(*tasks) == ["done"] * 3


@pytest.mark.asyncio
async def test_timeout_rejects_and_frees_slot():
    dispatcher = Dispatcher(concurrency=1, timeout=0.05)
    cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    async def fast():
        return "fast"

    with pytest.raises(QueueTimeout) as exc_info:
        await dispatcher.enqueue("slow", slow)

    assert exc_info.value.status_code == 504
    assert cancelled.is_set()
    assert dispatcher.timed_out == 1
    assert await dispatcher.enqueue("fast", fast) == "fast"


@pytest.mark.asyncio
async def test_timeout_counts_from_start_not_enqueue():
    dispatcher = Dispatcher(concurrency=1, timeout=0.2)

    async def job():
        await asyncio.sleep(0.12)
        return "ok"

    # The second job waits ~0.12s before starting, then runs 0.12s; total exceeds 0.2s.
    results = await asyncio.gather(dispatcher.enqueue("a", job), dispatcher.enqueue("b", job))

    assert results == ["ok", "ok"]
    assert dispatcher.timed_out == 0


@pytest.mark.asyncio
async def test_identical_fingerprints_are_coalesced():
    dispatcher = Dispatcher(concurrency=2, timeout=5.0)
    calls = 0

    async def job():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.02)
        return "shared"

    results = await asyncio.gather(*(dispatcher.enqueue("same", job) for _ in range(4)))

    assert results == ["shared"] * 4
    assert calls == 1
    assert dispatcher.coalesced == 3


@pytest.mark.asyncio
async def test_failure_propagates_to_all_waiters():
    dispatcher = Dispatcher(concurrency=1, timeout=5.0)

    async def failing():
        await asyncio.sleep(0.01)
        raise OracleError("boom")

    results = await asyncio.gather(
        dispatcher.enqueue("fp", failing), dispatcher.enqueue("fp", failing), return_exceptions=True
    )

    assert all(isinstance(result, OracleError) for result in results)
    assert dispatcher.failed == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_job():
    dispatcher = Dispatcher(concurrency=1, timeout=5.0)
    gate = asyncio.Event()

    async def job():
        await gate.wait()
        return "still here"

    first = asyncio.create_task(dispatcher.enqueue("fp", job))
    second = asyncio.create_task(dispatcher.enqueue("fp", job))
    await asyncio.sleep(0)
    first.cancel()
    gate.set()

    assert await second == "still here"


@pytest.mark.asyncio
async def test_shutdown_cancels_outstanding_jobs():
    dispatcher = Dispatcher(concurrency=1, timeout=5.0)

    async def forever():
        await asyncio.sleep(10)

    tasks = [asyncio.create_task(dispatcher.enqueue(f"fp{i}", forever)) for i in range(2)]
    await asyncio.sleep(0)

    await dispatcher.shutdown()
    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert all(isinstance(result, asyncio.CancelledError) for result in results)
    assert dispatcher.size == 0


@pytest.mark.parametrize("kwargs", [{"concurrency": 0}, {"timeout": 0}])
def test_rejects_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        Dispatcher(**kwargs)


@pytest.mark.asyncio
async def test_enqueue_after_shutdown_is_rejected():
    dispatcher = Dispatcher()
    await dispatcher.shutdown()

    async def job():
        return "never"

    with pytest.raises(OracleError) as exc_info:
        await dispatcher.enqueue("fp", job)

    assert exc_info.value.status_code == 503
    assert dispatcher.closed
