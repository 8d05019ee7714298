"""Gateway to the external oracle (text-generation) service."""

import json
import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlsplit

import httpx
from loguru import logger

from .cache import NON_SEMANTIC_FIELDS, request_fingerprint
from .config import Settings
from .dispatcher import Dispatcher
from .exceptions import ConfigurationError, OracleError, OracleHTTPError
from .extraction import Extraction, extract_text

RUN_PATH = "/api/v1/run"
TRUNCATION_MARKER = "..."
QUESTION_KEEP_CHARS = 200
ESSENTIAL_FIELDS = ("spread", "question", "n", "sig")

_BEARER = re.compile(r"^Bearer\s+", re.IGNORECASE)


def mask_token(token: str | None) -> str | None:
    """Show only the first and last four characters of a secret."""
    if not token:
        return None
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


def mask_url(url: str | None) -> str | None:
    """Drop the query string, which may carry credentials, from a URL for logging."""
    if not url:
        return url
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url[:40] + "..." if len(url) > 40 else url
    return f"{parts.scheme}://{parts.netloc}{parts.path}{'...' if parts.query else ''}"


def split_url_token(raw: str) -> tuple[str, str | None]:
    """Split the ``URL|TOKEN`` form; the part starting with http is the URL."""
    if "|" not in raw:
        return raw.strip(), None
    parts = [part.strip() for part in raw.split("|") if part.strip()]
    url = next((part for part in parts if part.lower().startswith("http")), parts[0] if parts else "")
    token = next((part for part in parts if not part.lower().startswith("http")), None)
    return url, token


def build_run_url(url: str, flow_id: str) -> str:
    """Resolve the run URL for a flow.

    ``{flow}`` placeholders are substituted, a URL ending in the run path gets
    the flow appended, a URL already naming a flow is used as is and a bare
    host gets the full run path.

    Raises:
        ConfigurationError: If the URL is not http(s).
    """
    if not url.lower().startswith(("http://", "https://")):
        raise ConfigurationError(f"Oracle URL must start with http or https, got {mask_url(url)!r}")

    flow = quote(flow_id, safe="")
    cleaned = url.rstrip("/")
    if "{flow}" in cleaned:
        return cleaned.replace("{flow}", flow)
    if cleaned.endswith(RUN_PATH):
        return f"{cleaned}/{flow}"
    if RUN_PATH in cleaned:
        return cleaned
    return f"{cleaned}{RUN_PATH}/{flow}"


def auth_headers(header_name: str, token: str | None, bearer: bool | None = None) -> dict[str, str]:
    """Build the auth header; Authorization gets a Bearer prefix unless told otherwise."""
    if not token:
        return {}
    if bearer is None:
        bearer = header_name.lower() == "authorization"
    if bearer and not _BEARER.match(token):
        token = f"Bearer {token}"
    return {header_name: token}


def build_input(payload: Mapping[str, Any] | str) -> str:
    """Serialize the semantic request fields into the oracle's ``input_value``."""
    if isinstance(payload, str):
        return payload
    fields = {
        key: value
        for key, value in payload.items()
        if key not in NON_SEMANTIC_FIELDS and value is not None
    }
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _hard_truncate(value: str, max_length: int) -> str:
    return value[: max_length - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def reduce_input(input_value: str, max_length: int = 1024) -> str:
    """Shrink an oversized input deterministically.

    First only the essential fields are kept (with the question cut to 200
    characters); if that is still too long, or the input is not a JSON
    object, the text is cut and ends with ``...``.
    """
    if len(input_value) <= max_length:
        return input_value

    logger.warning(
        f"Input length {len(input_value)} exceeds oracle limit {max_length}, reducing"
    )
    try:
        parsed = json.loads(input_value)
    except ValueError:
        return _hard_truncate(input_value, max_length)
    if not isinstance(parsed, dict):
        return _hard_truncate(input_value, max_length)

    essential: dict[str, Any] = {}
    for key in ESSENTIAL_FIELDS:
        value = parsed.get(key)
        if value is None:
            continue
        if key == "question" and isinstance(value, str):
            value = value[:QUESTION_KEEP_CHARS]
        essential[key] = value

    reduced = json.dumps(essential, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    if len(reduced) > max_length:
        reduced = _hard_truncate(reduced, max_length)
    return reduced


@dataclass
class OracleConfig:
    """Connection settings for the oracle service."""

    url: str | None
    api_key: str | None = None
    auth_header: str = "Authorization"
    auth_bearer: bool | None = None
    max_input_length: int = 1024
    debug: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "OracleConfig":
        return cls(
            url=settings.oracle_url,
            api_key=settings.oracle_api_key,
            auth_header=settings.oracle_auth_header,
            auth_bearer=settings.oracle_auth_bearer,
            max_input_length=settings.oracle_max_input_length,
            debug=settings.debug,
        )

    @property
    def configured(self) -> bool:
        return bool(self.url and self.url.strip())


class OracleGateway:
    """Builds, authenticates, dispatches and interprets oracle calls.

    The gateway never retries; every failure surfaces once as an
    ``OracleError`` subclass.
    """

    def __init__(
        self,
        config: OracleConfig,
        dispatcher: Dispatcher,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self._client = client
        self._owns_client = client is None

    async def startup(self) -> None:
        """Open the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.dispatcher.timeout))
            self._owns_client = True
        if self.config.configured:
            logger.info(f"Oracle gateway ready: {mask_url(split_url_token(self.config.url)[0])}")
        else:
            logger.warning("Oracle URL not configured; oracle requests will fail")

    async def shutdown(self) -> None:
        """Close the HTTP client if this gateway opened it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def fingerprint(self, flow_id: str, payload: Mapping[str, Any] | str) -> str:
        return request_fingerprint(flow_id, payload)

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when no oracle URL is set."""
        if not self.config.configured:
            raise ConfigurationError("Oracle URL not configured (set TAROT_ORACLE_URL)")

    def prepare_request(self, flow_id: str) -> tuple[str, dict[str, str]]:
        """Resolve the run URL and headers for a flow.

        Raises:
            ConfigurationError: If no oracle URL is configured.
        """
        self.ensure_configured()

        url, url_token = split_url_token(self.config.url or "")
        run_url = build_run_url(url, flow_id)
        token = (self.config.api_key or "").strip() or url_token

        headers = {"Content-Type": "application/json"}
        headers.update(auth_headers(self.config.auth_header, token, self.config.auth_bearer))

        if self.config.debug:
            logger.debug(
                f"Oracle request: {mask_url(run_url)} "
                f"{self.config.auth_header}: {mask_token(token) if token else '<none>'}"
            )
        return run_url, headers

    async def call(
        self,
        flow_id: str,
        payload: Mapping[str, Any] | str,
        fingerprint: str | None = None,
        on_text: Callable[[str], None] | None = None,
    ) -> Extraction:
        """Run one oracle call through the dispatcher and extract its text.

        Args:
            flow_id: Oracle flow to run.
            payload: Semantic request fields (or a raw prompt string).
            fingerprint: Precomputed request fingerprint, if the caller has one.
            on_text: Called with the extracted text inside the dispatched job,
                before the job settles and its fingerprint leaves the in-flight set.

        Returns:
            The extracted text, or ``NO_OUTPUT`` when the response had none.

        Raises:
            ConfigurationError: No usable oracle URL.
            OracleHTTPError: The oracle answered with a non-2xx status.
            QueueTimeout: The call exceeded the dispatcher timeout.
            OracleError: Network failure.

        """
        run_url, headers = self.prepare_request(flow_id)
        input_value = reduce_input(build_input(payload), self.config.max_input_length)
        key = fingerprint or self.fingerprint(flow_id, payload)

        async def execute() -> Extraction:
            extraction = extract_text(await self._post(run_url, headers, input_value))
            if not extraction.found:
                logger.warning(f"Oracle response for flow {flow_id} had no extractable text")
            elif on_text is not None:
                on_text(extraction.text)
            return extraction

        return await self.dispatcher.enqueue(key, execute)

    async def _post(self, url: str, headers: dict[str, str], input_value: str) -> Any:
        if self._client is None:
            await self.startup()
        client: httpx.AsyncClient = self._client  # type: ignore[assignment]

        payload = {
            "output_type": "text",
            "input_type": "chat",
            "input_value": input_value,
            "session_id": str(uuid.uuid4()),
        }
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Oracle request timed out: {e}")
            raise OracleError(f"Oracle request timed out: {e}", status_code=504) from e
        except httpx.HTTPError as e:
            logger.error(f"Oracle request failed: {e}")
            raise OracleError(f"Oracle unreachable: {e}") from e

        if response.is_error:
            logger.error(f"Oracle returned {response.status_code}: {response.text[:200]}")
            raise OracleHTTPError(response.status_code, response.reason_phrase or "error")

        try:
            return response.json()
        except ValueError:
            return response.text

    async def health_check(self) -> bool:
        """Check if the oracle is configured (no network call)."""
        return self.config.configured
