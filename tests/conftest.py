"""Shared test fixtures."""

import asyncio
import json
import os
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio

# Set test environment before the package builds its settings
os.environ.setdefault("TAROT_LOG_LEVEL", "ERROR")
os.environ.setdefault("TAROT_METRICS_LOG_INTERVAL_SECONDS", "0")

from tarot_oracle.api import create_app  # noqa: E402
from tarot_oracle.config import Settings  # noqa: E402
from tarot_oracle.service import OracleService, create_service  # noqa: E402

ORACLE_URL = "http://oracle.test/api/v1/run/{flow}"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class OracleStub:
    """Stands in for the oracle service behind httpx.MockTransport."""

    def __init__(self, body: Any = None, status_code: int = 200, delay: float = 0.0) -> None:
        self.body = {"text": "The cards are favourable."} if body is None else body
        self.status_code = status_code
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.body, str):
            return httpx.Response(self.status_code, text=self.body)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def sent_payload(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "oracle_url": ORACLE_URL,
        "oracle_api_key": "test-token",
        "metrics_log_interval_seconds": 0,
    }
    values.update(overrides)
    return Settings(**values)


def make_service(stub: OracleStub, **overrides: Any) -> OracleService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return create_service(make_settings(**overrides), client=client)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oracle_stub() -> OracleStub:
    return OracleStub()


@pytest_asyncio.fixture
async def service(oracle_stub: OracleStub) -> AsyncGenerator[OracleService, None]:
    service = make_service(oracle_stub)
    await service.startup()
    yield service
    await service.shutdown()


@pytest_asyncio.fixture
async def client(service: OracleService) -> AsyncGenerator[httpx.AsyncClient, None]:
    """API client wired to an isolated app instance via app.state."""
    app = create_app(make_settings())
    app.state.oracle_service = service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def sample_reading() -> dict[str, Any]:
    return {"spreadKind": "three", "question": "Will I get the job?", "sessionId": "abc-123"}


@pytest.fixture
def stub_factory() -> type[OracleStub]:
    return OracleStub


@pytest_asyncio.fixture
async def service_factory() -> AsyncGenerator[Any, None]:
    """Build extra services with overridden settings; shut down afterwards."""
    created: list[OracleService] = []

    async def factory(stub: OracleStub, **overrides: Any) -> OracleService:
        built = make_service(stub, **overrides)
        await built.startup()
        created.append(built)
        return built

    yield factory
    for built in created:
        await built.shutdown()


@pytest.fixture
def app_factory() -> Any:
    """Create an isolated app bound to a given service."""

    def factory(oracle_service: OracleService, **overrides: Any) -> httpx.AsyncClient:
        app = create_app(make_settings(**overrides))
        app.state.oracle_service = oracle_service
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    return factory
