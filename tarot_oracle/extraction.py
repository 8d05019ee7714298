"""Pull the reading text out of an oracle response of unknown shape.

The oracle does not commit to a response schema. Known shapes are tried in a
fixed priority order and the first non-empty string wins; anything else is
reported as ``NO_OUTPUT`` instead of being dumped back to the user as JSON.
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class Extraction:
    """Text found in a response and the shape it was found in."""

    text: str
    source: str

    @property
    def found(self) -> bool:
        return self.source != UNRECOGNIZED


NO_OUTPUT = Extraction(text="", source=UNRECOGNIZED)


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _get(value: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _message_text(results: Any) -> str | None:
    return _text(_get(results, "message", "data", "text")) or _text(
        _get(results, "message", "text")
    )


def _iter_run_outputs(payload: Any) -> Iterator[Any]:
    outputs = _get(payload, "outputs")
    if not isinstance(outputs, list):
        return
    for output in outputs:
        nested = _get(output, "outputs")
        if isinstance(nested, list):
            yield from nested
        yield output


def _from_string(payload: Any) -> str | None:
    return _text(payload)


def _from_run_outputs(payload: Any) -> str | None:
    """``outputs[].outputs[].results.message.data.text`` (flow run API)."""
    for output in _iter_run_outputs(payload):
        text = _message_text(_get(output, "results"))
        if text:
            return text
    return None


def _from_results(payload: Any) -> str | None:
    return _message_text(_get(payload, "results"))


def _field(*path: str) -> Callable[[Any], str | None]:
    def extractor(payload: Any) -> str | None:
        return _text(_get(payload, *path))

    extractor.__name__ = "_from_" + "_".join(path)
    return extractor


EXTRACTORS: tuple[tuple[str, Callable[[Any], str | None]], ...] = (
    ("string", _from_string),
    ("outputs", _from_run_outputs),
    ("text", _field("text")),
    ("output", _field("output")),
    ("result", _field("result")),
    ("data", _field("data")),
    ("data.text", _field("data", "text")),
    ("data.output", _field("data", "output")),
    ("data.result", _field("data", "result")),
    ("results.message", _from_results),
)


def extract_text(payload: Any) -> Extraction:
    """Return the first non-empty text found in ``payload``, or ``NO_OUTPUT``."""
    for source, extractor in EXTRACTORS:
        text = extractor(payload)
        if text:
            return Extraction(text=text.strip(), source=source)
    return NO_OUTPUT
