"""Data models using Pydantic."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

MAX_QUESTION_LENGTH = 2000
MAX_EXTRA_QUESTIONS = 10


class CamelModel(BaseModel):
    """Accepts and emits camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _clean_question(value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    value = value.strip()
    if "\x00" in value:
        raise PydanticCustomError("null_bytes", "Null bytes not allowed", {"input": value})
    if len(value) > MAX_QUESTION_LENGTH:
        raise PydanticCustomError(
            "question_too_long",
            "Question is too long (max 2000 characters)",
            {"length": len(value), "max_length": MAX_QUESTION_LENGTH},
        )
    return value or None


class OracleRequest(CamelModel):
    """Body of ``POST /oracle/{flow_id}``."""

    spread_kind: str = Field(..., min_length=1, max_length=64)
    question: str | None = None
    count: int | None = Field(None, ge=1, le=78)
    significator: str | None = Field(None, max_length=64)
    extra_questions: list[str] | None = Field(None, max_length=MAX_EXTRA_QUESTIONS)
    cards: list[dict[str, Any]] | None = Field(None, max_length=20)
    session_id: str | None = Field(None, max_length=128)

    @field_validator("spread_kind", mode="before")
    @classmethod
    def validate_spread_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip():
                raise PydanticCustomError(
                    "empty_spread_kind", "Spread kind cannot be empty", {"input": value}
                )
            return value.strip().lower()
        return value

    @field_validator("question", mode="before")
    @classmethod
    def validate_question(cls, value: Any) -> Any:
        return _clean_question(value)

    def to_oracle_payload(self) -> dict[str, Any]:
        """Semantic fields forwarded to the oracle; the session id is not one of them."""
        payload: dict[str, Any] = {
            "spread": self.spread_kind,
            "question": self.question,
            "n": self.count,
            "sig": self.significator,
            "extraQuestions": self.extra_questions or None,
            "cards": self.cards or None,
        }
        return {key: value for key, value in payload.items() if value is not None}


class ReadingResponse(CamelModel):
    """Oracle reading returned to the client."""

    text: str
    cached: bool = False
    no_output: bool = False


class DrawRequest(CamelModel):
    """Body of ``POST /draw/{spread_kind}``."""

    count: int | None = Field(None, ge=1, le=78)
    significator: str | None = Field(None, max_length=64)
    extra_questions: list[str] | None = Field(None, max_length=MAX_EXTRA_QUESTIONS)


class DrawResponse(CamelModel):
    spread_kind: str
    title: str
    cards: list[dict[str, Any]]


class StatusResponse(CamelModel):
    """Body of ``GET /status``."""

    uptime_seconds: float
    total_requests: int
    cache_hits: int
    cache_misses: int
    cache_hit_rate: float
    queue_waiting: int
    queue_pending: int
    cache_size: int
    cache_capacity: int
