"""Oracle request pipeline: admission, cache, dispatcher, gateway."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from .cache import ResponseCache
from .config import Settings
from .dispatcher import Dispatcher
from .exceptions import OracleError
from .gateway import OracleConfig, OracleGateway
from .metrics import Metrics
from .rate_limiter import AdmissionController, LimiterKind, create_admission_controller


@dataclass(frozen=True)
class ReadingResult:
    """Result of one oracle reading."""

    text: str
    cached: bool = False
    no_output: bool = False


class OracleService:
    """Composes the request-handling components behind one object."""

    def __init__(
        self,
        cache: ResponseCache,
        admission: AdmissionController,
        dispatcher: Dispatcher,
        gateway: OracleGateway,
        metrics: Metrics,
    ) -> None:
        """Initialize with injected dependencies."""
        self.cache = cache
        self.admission = admission
        self.dispatcher = dispatcher
        self.gateway = gateway
        self.metrics = metrics

    def admit(self, identity: str) -> None:
        """Charge one inbound API request against the general limiter."""
        self.metrics.record_request()
        self.admission.check(identity, LimiterKind.GENERAL)

    async def read(
        self,
        identity: str,
        flow_id: str,
        payload: Mapping[str, Any],
    ) -> ReadingResult:
        """Serve a reading from cache or from the oracle.

        The oracle limiter is only charged on a cache miss, so repeated
        identical questions never consume oracle budget while cached.
        """
        key = self.gateway.fingerprint(flow_id, payload)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for flow {flow_id}")
            return ReadingResult(text=cached, cached=True)

        self.gateway.ensure_configured()
        self.admission.check(identity, LimiterKind.ORACLE)

        try:
            extraction = await self.gateway.call(
                flow_id, payload, fingerprint=key, on_text=lambda text: self.cache.set(key, text)
            )
        except OracleError as e:
            self.metrics.record_oracle_call(success=False)
            logger.error(f"Oracle call for flow {flow_id} failed: {e}")
            raise

        self.metrics.record_oracle_call(success=True, no_output=not extraction.found)
        if not extraction.found:
            return ReadingResult(text="", no_output=True)
        return ReadingResult(text=extraction.text)

    async def startup(self) -> None:
        await self.gateway.startup()

    async def shutdown(self) -> None:
        await self.dispatcher.shutdown()
        await self.gateway.shutdown()

    async def health_check(self) -> dict[str, bool]:
        """Check health of all components."""
        return {
            "cache": self.cache.health_check(),
            "dispatcher": not self.dispatcher.closed,
            "oracle_configured": await self.gateway.health_check(),
        }


def create_service(settings: Settings, client: httpx.AsyncClient | None = None) -> OracleService:
    """Build a fully wired service from configuration."""
    dispatcher = Dispatcher(
        concurrency=settings.queue_concurrency, timeout=settings.queue_timeout_seconds
    )
    cache = ResponseCache(max_size=settings.cache_max_size, ttl_seconds=settings.cache_ttl_seconds)
    admission = create_admission_controller(settings, queue_depth=lambda: dispatcher.size)
    gateway = OracleGateway(OracleConfig.from_settings(settings), dispatcher, client=client)
    metrics = Metrics(cache, dispatcher)
    return OracleService(cache, admission, dispatcher, gateway, metrics)
