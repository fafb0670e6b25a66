"""Short-lived in-memory caches for list responses and the users list.

Entries expire by age only; there is no size-based eviction. Invalidation is
wholesale via ``clear()``.
"""

import time
from collections.abc import Callable
from typing import Generic, TypeVar

from pydantic import BaseModel

from lettertrack.schemas.letters import LettersPage

T = TypeVar("T")

Clock = Callable[[], float]


class CacheEntry(BaseModel):
    page: LettersPage
    stored_at: float


class ResponseCache:
    """Maps a canonical query string to the last successful page for it."""

    def __init__(self, ttl: float, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> LettersPage | None:
        """Return the cached page if it is younger than the TTL."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl:
            return None
        return entry.page

    def set(self, key: str, page: LettersPage) -> None:
        self._entries[key] = CacheEntry(page=page, stored_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class TimedValue(Generic[T]):
    """A single cached value with its own TTL."""

    def __init__(self, ttl: float, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._value: T | None = None
        self._stored_at = 0.0

    def get(self) -> T | None:
        if self._value is None or self._clock() - self._stored_at >= self._ttl:
            return None
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._stored_at = self._clock()

    def clear(self) -> None:
        self._value = None
