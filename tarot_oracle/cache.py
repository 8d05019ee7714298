"""Response cache keyed by request fingerprint.

Entries expire a fixed time after insertion; reading an entry refreshes its
recency for LRU eviction but never extends its lifetime. Every operation is
plain synchronous code, so a single event loop can share one instance
without locks.
"""

import hashlib
import json
import re
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from loguru import logger

NON_SEMANTIC_FIELDS = frozenset(
    {"session_id", "sessionId", "request_id", "requestId", "timestamp", "ts"}
)

_WHITESPACE = re.compile(r"\s+")


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return _WHITESPACE.sub(" ", value).strip().casefold()
    if isinstance(value, Mapping):
        return {
            str(key): _normalize(item)
            for key, item in value.items()
            if key not in NON_SEMANTIC_FIELDS and item is not None
        }
    if isinstance(value, list | tuple):
        return [_normalize(item) for item in value]
    return value


def request_fingerprint(flow_id: str, payload: Mapping[str, Any] | str) -> str:
    """Derive the cache/coalescing key for an oracle request.

    Only the flow id and the semantic payload fields take part: session ids,
    timestamps and empty fields are dropped, strings are whitespace-collapsed
    and case-folded, and mappings are serialized with sorted keys.
    """
    normalized = json.dumps(
        {"flow": flow_id, "input": _normalize(payload)},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    digest = hashlib.sha256(normalized.encode()).hexdigest()
    return f"{flow_id}:{digest[:32]}"


@dataclass(frozen=True)
class CacheEntry:
    """One cached oracle answer."""

    fingerprint: str
    value: str
    inserted_at: float
    last_accessed_at: float


class ResponseCache:
    """Bounded in-memory LRU cache with absolute per-entry TTL."""

    def __init__(
        self,
        max_size: int = 500,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize in-memory cache.

        Args:
            max_size: Maximum number of entries before LRU eviction.
            ttl_seconds: Lifetime of an entry, counted from insertion.
            clock: Monotonic time source, injectable for tests.

        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        logger.info(f"Response cache initialized (max_size={max_size}, ttl={ttl_seconds}s)")

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at >= self.ttl_seconds

    def get(self, fingerprint: str) -> str | None:
        """Return the cached value, or None when absent or expired."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            self.misses += 1
            return None

        now = self._clock()
        if self._expired(entry, now):
            del self._entries[fingerprint]
            self.misses += 1
            logger.debug(f"Cache expired for key {fingerprint[:16]}...")
            return None

        self._entries[fingerprint] = replace(entry, last_accessed_at=now)
        self._entries.move_to_end(fingerprint)
        self.hits += 1
        logger.debug(f"Cache hit for key {fingerprint[:16]}...")
        return entry.value

    def set(self, fingerprint: str, value: str) -> None:
        """Insert or overwrite an entry, evicting the least recently used on overflow."""
        now = self._clock()
        self._entries[fingerprint] = CacheEntry(
            fingerprint=fingerprint, value=value, inserted_at=now, last_accessed_at=now
        )
        self._entries.move_to_end(fingerprint)

        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted least recently used key {evicted[:16]}... from cache")

    def delete(self, fingerprint: str) -> None:
        """Remove an entry if present."""
        self._entries.pop(fingerprint, None)

    def purge_expired(self) -> int:
        """Physically drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        """Number of stored entries, including expired ones not yet purged."""
        return len(self._entries)

    def capacity(self) -> int:
        return self.max_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        entry = self._entries.get(fingerprint) if isinstance(fingerprint, str) else None
        return entry is not None and not self._expired(entry, self._clock())

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return round(self.hits / lookups, 4) if lookups else 0.0

    def health_check(self) -> bool:
        """In-memory cache is healthy while it respects its bound."""
        return len(self._entries) <= self.max_size
