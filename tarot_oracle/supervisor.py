"""Process supervisor: restart crashed services with exponential backoff.

Each service cycles RUNNING -> (exit) -> BACKOFF -> RUNNING, the delay
doubling per attempt up to a cap. ``stop()`` suppresses restarts, sends
SIGTERM and kills whatever is still alive after a grace period.
"""

import asyncio
import contextlib
import signal
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from .api import configure_logging
from .config import settings


class ServiceState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    BACKOFF = "backoff"


@dataclass(eq=False)
class SupervisedService:
    """One child process under supervision."""

    name: str
    argv: list[str]
    attempts: int = 0
    stopping: bool = False
    state: ServiceState = ServiceState.STOPPED
    process: Any = field(default=None, repr=False)


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Delay before restarting after the given (1-based) attempt."""
    return min(base * 2 ** max(attempt - 1, 0), cap)


async def spawn_process(argv: list[str]) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


async def _forward(name: str, stream: asyncio.StreamReader | None, is_error: bool) -> None:
    if stream is None:
        return
    async for raw in stream:
        line = raw.decode(errors="replace").rstrip()
        if is_error:
            logger.warning(f"[{name} ERR] {line}")
        else:
            logger.info(f"[{name}] {line}")


class Supervisor:
    """Keeps a set of services running until stopped."""

    def __init__(
        self,
        services: list[SupervisedService],
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        kill_timeout: float = 5.0,
        spawn: Callable[[list[str]], Awaitable[Any]] = spawn_process,
    ) -> None:
        self.services = services
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.kill_timeout = kill_timeout
        self._spawn = spawn
        self._stop_event = asyncio.Event()
        self.restarts: list[tuple[str, float]] = []

    async def run(self) -> None:
        """Start every service and supervise until all have stopped."""
        for service in self.services:
            service.stopping = False
            service.attempts = 0
        await asyncio.gather(*(self._supervise(service) for service in self.services))

    async def _supervise(self, service: SupervisedService) -> None:
        while not service.stopping:
            service.attempts += 1
            delay = backoff_delay(service.attempts, self.base_delay, self.max_delay)

            logger.info(f"[supervisor] starting {service.name} (attempt {service.attempts})")
            try:
                process = await self._spawn(service.argv)
            except OSError as e:
                logger.error(f"[supervisor] {service.name} spawn error: {e}")
            else:
                service.process = process
                service.state = ServiceState.RUNNING
                forwarders = [
                    asyncio.create_task(_forward(service.name, process.stdout, False)),
                    asyncio.create_task(_forward(service.name, process.stderr, True)),
                ]
                code = await process.wait()
                await asyncio.gather(*forwarders, return_exceptions=True)
                service.process = None
                logger.warning(f"[supervisor] {service.name} exited with code={code}")

            if service.stopping:
                break

            service.state = ServiceState.BACKOFF
            self.restarts.append((service.name, delay))
            logger.info(f"[supervisor] will restart {service.name} in {delay:g}s")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)

        service.state = ServiceState.STOPPED

    async def stop(self) -> None:
        """Stop all services without restarting them."""
        self._stop_event.set()
        for service in self.services:
            service.stopping = True
        await asyncio.gather(*(self._terminate(service) for service in self.services))

    async def _terminate(self, service: SupervisedService) -> None:
        process = service.process
        if process is None or process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
        except TimeoutError:
            logger.warning(f"[supervisor] {service.name} ignored SIGTERM, killing")
            with contextlib.suppress(ProcessLookupError):
                process.kill()


async def _main() -> None:
    supervisor = Supervisor([SupervisedService("server", [sys.executable, "-m", "tarot_oracle"])])
    loop = asyncio.get_running_loop()
    stopping: set[asyncio.Task] = set()

    def _on_signal(sig: signal.Signals) -> None:
        logger.info(f"[supervisor] {sig.name} received, stopping children...")
        task = loop.create_task(supervisor.stop())
        stopping.add(task)
        task.add_done_callback(stopping.discard)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig)
    logger.info("[supervisor] started. Press Ctrl+C to stop.")
    await supervisor.run()


def main() -> None:
    """Entry point for the tarot-oracle-supervisor script."""
    configure_logging(settings)
    asyncio.run(_main())


if __name__ == "__main__":
    main()
