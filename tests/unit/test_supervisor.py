"""Unit tests for the process supervisor."""

import asyncio

import pytest

from tarot_oracle.supervisor import ServiceState, SupervisedService, Supervisor, backoff_delay


class FakeProcess:
    """Child process double; blocking ones run until terminated."""

    def __init__(self, code: int = 1, block: bool = False, ignore_term: bool = False) -> None:
        self.stdout = None
        self.stderr = None
        self.returncode = None if block else code
        self.ignore_term = ignore_term
        self.terminated = False
        self.killed = False
        self._done = asyncio.Event()
        if not block:
            self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self.ignore_term:
            self.returncode = -15
            self._done.set()

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9
        self._done.set()


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.mark.parametrize(
    "attempt,expected", [(1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0), (6, 30.0), (20, 30.0)]
)
def test_backoff_delay(attempt, expected):
    assert backoff_delay(attempt) == expected


@pytest.mark.asyncio
async def test_restarts_crashed_service_with_backoff():
    spawned: list[FakeProcess] = []

    async def spawn(argv):
        process = FakeProcess(block=len(spawned) >= 2)
        spawned.append(process)
        return process

    service = SupervisedService("server", ["server"])
    supervisor = Supervisor([service], base_delay=0.01, max_delay=0.04, spawn=spawn)
    runner = asyncio.create_task(supervisor.run())

    await _wait_for(lambda: len(spawned) == 3)
    assert service.state is ServiceState.RUNNING

    await supervisor.stop()
    await asyncio.wait_for(runner, timeout=1.0)

    assert supervisor.restarts == [("server", 0.01), ("server", 0.02)]
    assert spawned[-1].terminated
    assert service.state is ServiceState.STOPPED
    assert service.attempts == 3


@pytest.mark.asyncio
async def test_spawn_error_is_retried():
    spawned: list[FakeProcess] = []

    async def spawn(argv):
        if not spawned:
            spawned.append(None)
            raise FileNotFoundError(argv[0])
        process = FakeProcess(block=True)
        spawned.append(process)
        return process

    service = SupervisedService("server", ["missing-binary"])
    supervisor = Supervisor([service], base_delay=0.01, spawn=spawn)
    runner = asyncio.create_task(supervisor.run())

    await _wait_for(lambda: len(spawned) == 2)
    await supervisor.stop()
    await asyncio.wait_for(runner, timeout=1.0)

    assert supervisor.restarts == [("server", 0.01)]


@pytest.mark.asyncio
async def test_stop_kills_process_ignoring_sigterm():
    process = FakeProcess(block=True, ignore_term=True)

    async def spawn(argv):
        return process

    service = SupervisedService("server", ["stubborn"])
    supervisor = Supervisor([service], kill_timeout=0.02, spawn=spawn)
    runner = asyncio.create_task(supervisor.run())

    await _wait_for(lambda: service.process is process)
    await supervisor.stop()
    await asyncio.wait_for(runner, timeout=1.0)

    assert process.terminated
    assert process.killed
    assert supervisor.restarts == []
