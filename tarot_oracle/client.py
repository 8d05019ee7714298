"""Async HTTP client for front ends (chat bot, web UI) talking to this API."""

from typing import Any

import httpx
from loguru import logger

from .exceptions import AdmissionDenied, OracleError, OracleHTTPError, QueueTimeout
from .middleware import SESSION_HEADER
from .retry import with_transient_retry


class TarotClient:
    """Thin client over the HTTP surface, with retry on queue timeouts."""

    def __init__(
        self,
        base_url: str,
        session_token: str | None = None,
        timeout: float = 90.0,
        max_retries: int = 3,
        min_wait: float = 1,
        max_wait: float = 10,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {SESSION_HEADER: session_token} if session_token else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )
        self.max_retries = max_retries
        self.min_wait = min_wait
        self.max_wait = max_wait

    async def __aenter__(self) -> "TarotClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {"error": response.text[:200]}

        message = body.get("error") or response.reason_phrase
        if response.status_code == 429:
            raise AdmissionDenied(
                limiter=body.get("limiter", "general"),
                limit=body.get("limit", 0),
                window=body.get("windowSeconds", 0),
                retry_after=int(response.headers.get("Retry-After", body.get("retryAfterSeconds", 1))),
                queue_length=body.get("queueLength"),
            )
        if response.status_code == 504:
            raise QueueTimeout(body.get("timeoutSeconds", 0))
        if response.status_code >= 500:
            raise OracleHTTPError(response.status_code, message)
        raise OracleError(message, status_code=response.status_code)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._client.get(path, params=params)
        self._raise_for_status(response)
        return response.json()

    async def draw(
        self,
        spread: str,
        count: int | None = None,
        significator: str | None = None,
        extra_questions: list[str] | None = None,
    ) -> dict[str, Any]:
        """Draw a spread; significator and extras travel in a POST body."""
        if significator or extra_questions:
            response = await self._client.post(
                f"/draw/{spread}",
                json={"count": count, "significator": significator, "extraQuestions": extra_questions},
            )
            self._raise_for_status(response)
            return response.json()

        params = {"count": count} if count is not None else None
        return await self._get(f"/draw/{spread}", params)

    async def cards(self) -> list[dict[str, Any]]:
        return (await self._get("/cards"))["cards"]

    async def status(self) -> dict[str, Any]:
        return await self._get("/status")

    async def read(
        self,
        flow: str,
        spread: str,
        question: str | None = None,
        count: int | None = None,
        significator: str | None = None,
        cards: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Request an oracle reading, retrying queue timeouts."""
        body: dict[str, Any] = {"spreadKind": spread}
        for key, value in (
            ("question", question),
            ("count", count),
            ("significator", significator),
            ("cards", cards),
        ):
            if value is not None:
                body[key] = value

        @with_transient_retry(
            f"Reading {flow}/{spread}",
            max_retries=self.max_retries,
            min_wait=self.min_wait,
            max_wait=self.max_wait,
        )
        async def _post() -> dict[str, Any]:
            try:
                response = await self._client.post(f"/oracle/{flow}", json=body)
            except httpx.TimeoutException as e:
                raise TimeoutError(f"Request to /oracle/{flow} timed out: {e}") from e
            except httpx.TransportError as e:
                raise ConnectionError(f"Could not reach tarot API: {e}") from e
            self._raise_for_status(response)
            return response.json()

        result = await _post()
        if result.get("noOutput"):
            logger.info(f"Oracle returned no output for {flow}/{spread}")
        return result
