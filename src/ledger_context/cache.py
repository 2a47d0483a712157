"""Time-boxed memoization and in-flight request coalescing."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, replace
from typing import Any

from .constants import DEFAULT_CACHE_MAX_AGE_SECONDS, DEFAULT_CACHE_MAX_ENTRIES

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CacheKey:
    """Composite key: owning node (by identity), method name and parameters."""

    owner: Any
    method: str
    params: tuple[Hashable, ...] = ()

    def with_params(self, params: tuple[Hashable, ...]) -> CacheKey:
        return replace(self, params=params)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CacheKey):
            return NotImplemented
        return (
            self.owner is other.owner
            and self.method == other.method
            and self.params == other.params
        )

    def __hash__(self) -> int:
        return hash((id(self.owner), self.method, self.params))


class CacheEntry:
    """Slot holding either a pending future or the last settled value."""

    __slots__ = ("future", "value", "resolved_at")

    def __init__(self, future: asyncio.Future | None = None) -> None:
        self.future = future
        self.value: Any = None
        self.resolved_at: float | None = None

    @property
    def in_flight(self) -> bool:
        return self.future is not None

    def age(self, now: float) -> float | None:
        if self.resolved_at is None:
            return None
        return now - self.resolved_at


class DedupCache:
    """Keyed store coalescing concurrent identical calls and caching results.

    At most one producer runs per key at any time. Results are reused while
    they are younger than the interval requested by the caller; failures are
    never cached. The store is bounded: entries older than ``max_age_seconds``
    are dropped when touched or when the store overflows, and the least
    recently used entries are evicted beyond ``max_entries``.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        *,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        max_age_seconds: float = DEFAULT_CACHE_MAX_AGE_SECONDS,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"Cache size must be positive, got {max_entries}")
        self._clock = clock
        self._max_entries = max_entries
        self._max_age = max_age_seconds
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Core protocol
    # ------------------------------------------------------------------
    async def deduplicated(
        self,
        key: CacheKey,
        producer: Callable[[], Awaitable[Any]],
        *,
        alternative_params: tuple[Hashable, ...] | None = None,
        interval_seconds: float,
    ) -> Any:
        alternative_key = (
            key.with_params(alternative_params) if alternative_params is not None else None
        )
        bypass = interval_seconds <= 0

        if not bypass:
            for candidate in (key, alternative_key):
                if candidate is None:
                    continue
                entry = self._lookup(candidate)
                if entry is None:
                    continue
                if entry.in_flight:
                    logger.debug("Coalescing onto in-flight %s.%s", key.method, candidate.params)
                    return await asyncio.shield(entry.future)  # type: ignore[arg-type]
                age = entry.age(self._clock())
                if age is not None and age < interval_seconds:
                    logger.debug("Cache hit for %s.%s (age=%.3fs)", key.method, key.params, age)
                    return entry.value

        future = self.track(
            key,
            asyncio.ensure_future(producer()),
            alternative_key=alternative_key if bypass else None,
        )
        return await asyncio.shield(future)

    def track(
        self,
        key: CacheKey,
        future: asyncio.Future,
        *,
        alternative_key: CacheKey | None = None,
    ) -> asyncio.Future:
        """Publish ``future`` as the in-flight call for ``key`` and cache its outcome."""
        entry = CacheEntry(future)
        self._insert(key, entry)
        future.add_done_callback(
            lambda done: self._settle(key, entry, done, alternative_key)
        )
        return future

    def _settle(
        self,
        key: CacheKey,
        entry: CacheEntry,
        future: asyncio.Future,
        alternative_key: CacheKey | None,
    ) -> None:
        if future.cancelled() or future.exception() is not None:
            if self._entries.get(key) is entry:
                del self._entries[key]
            return

        if self._entries.get(key) is not entry:
            return
        value = future.result()
        entry.future = None
        entry.value = value
        entry.resolved_at = self._clock()
        if alternative_key is not None:
            self.store(alternative_key, value)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------
    def _lookup(self, key: CacheKey) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        age = entry.age(self._clock())
        if age is not None and age >= self._max_age:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    def _insert(self, key: CacheKey, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_entries:
            self.purge()
        evicted = 0
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
            evicted += 1
        if evicted:
            logger.debug("Evicted %d least recently used cache entries", evicted)

    def purge(self) -> int:
        """Drop settled entries older than the maximum age."""
        now = self._clock()
        expired = []
        for key, entry in self._entries.items():
            age = entry.age(now)
            if age is not None and age >= self._max_age:
                expired.append(key)
        for key in expired:
            del self._entries[key]
        return len(expired)

    # ------------------------------------------------------------------
    # Direct access
    # ------------------------------------------------------------------
    def store(self, key: CacheKey, value: Any) -> None:
        """Record ``value`` as freshly resolved for ``key``."""
        entry = CacheEntry()
        entry.value = value
        entry.resolved_at = self._clock()
        self._insert(key, entry)

    def peek(self, key: CacheKey, max_age: float) -> tuple[bool, Any]:
        """Return ``(True, value)`` when a settled entry younger than ``max_age`` exists."""
        entry = self._lookup(key)
        if entry is None or entry.in_flight:
            return False, None
        age = entry.age(self._clock())
        if age is None or age >= max_age:
            return False, None
        return True, entry.value

    def in_flight(self, key: CacheKey) -> asyncio.Future | None:
        entry = self._entries.get(key)
        return entry.future if entry is not None else None

    def invalidate(self, key: CacheKey) -> bool:
        return self._entries.pop(key, None) is not None

    def forget(self, owner: Any, *, keep_methods: tuple[str, ...] = ()) -> int:
        """Drop every entry owned by ``owner`` except those of ``keep_methods``."""
        doomed = [
            key
            for key in self._entries
            if key.owner is owner and key.method not in keep_methods
        ]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
