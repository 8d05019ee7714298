"""Domain-specific exceptions for the tarot oracle API."""

from typing import Any


class TarotOracleError(Exception):
    """Base exception for all tarot oracle errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception with context."""
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result: dict[str, Any] = {"error": self.message, "type": self.__class__.__name__}
        result.update(self.details)
        return result


class ValidationError(TarotOracleError):
    """Error related to input validation (not Pydantic)."""

    status_code = 400


class SpreadError(TarotOracleError):
    """Raised for an unknown spread kind, a bad card count or an unknown significator."""

    status_code = 400


class ConfigurationError(TarotOracleError):
    """Required configuration is missing or malformed."""

    status_code = 500


class AdmissionDenied(TarotOracleError):
    """Raised when a client identity exceeds a rate window."""

    status_code = 429

    def __init__(
        self,
        limiter: str,
        limit: int,
        window: int,
        retry_after: int,
        queue_length: int | None = None,
    ) -> None:
        self.limiter = limiter
        self.retry_after = retry_after
        self.queue_length = queue_length
        details: dict[str, Any] = {
            "limiter": limiter,
            "retryAfterSeconds": retry_after,
            "limit": limit,
            "windowSeconds": window,
        }
        if queue_length is not None:
            details["queueLength"] = queue_length
        super().__init__(
            f"Rate limit exceeded: {limit} requests per {window} seconds",
            details=details,
        )


class OracleError(TarotOracleError):
    """Error related to the oracle service call."""

    status_code = 502


class OracleHTTPError(OracleError):
    """The oracle answered with a non-2xx status."""

    def __init__(self, oracle_status: int, message: str) -> None:
        self.oracle_status = oracle_status
        super().__init__(
            f"Oracle returned {oracle_status}: {message}",
            details={"oracleStatus": oracle_status},
        )


class QueueTimeout(OracleError):
    """A dispatched job did not finish within its execution budget."""

    status_code = 504

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Oracle call timed out after {timeout:g}s, please retry",
            details={"timeoutSeconds": timeout, "retryable": True},
        )
