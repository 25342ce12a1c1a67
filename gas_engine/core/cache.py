# /gas_engine/core/cache.py
# TTL memoization with single-flight population per key.

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, TypeVar

from gas_engine.core.logger import get_logger, CACHE_LOOKUPS

log = get_logger(__name__)

T = TypeVar("T")


def _retrieve_exception(task: asyncio.Task):
    # Every waiter may have been cancelled; mark the outcome as observed.
    if not task.cancelled():
        task.exception()


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    created_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.created_at < ttl


class TTLCache:
    """
    Key/value store where every entry lives for the same `ttl` seconds.

    On a miss the producer runs as its own task and is registered under the
    key; callers arriving while it runs await that same task instead of
    starting another one. Waiters are shielded, so a caller that gets
    cancelled leaves the computation running for everybody else. A producer
    that raises leaves nothing behind: the next call retries.

    Check-and-register happens without an intervening await, which keeps it
    atomic on the event loop without a lock over unrelated keys.
    """
    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic, max_entries: int = 10_000):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock(), self.ttl):
            del self._entries[key]
            return None
        return entry.value

    async def get_or_compute(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        if not self.enabled:
            CACHE_LOOKUPS.labels("bypass").inc()
            return await producer()

        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_fresh(self._clock(), self.ttl):
                CACHE_LOOKUPS.labels("hit").inc()
                log.debug("CACHE_HIT", key=key)
                return entry.value
            del self._entries[key]
            log.debug("CACHE_EXPIRED", key=key)

        task = self._inflight.get(key)
        if task is None:
            CACHE_LOOKUPS.labels("miss").inc()
            task = asyncio.ensure_future(self._populate(key, producer))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task
        else:
            CACHE_LOOKUPS.labels("shared").inc()
            log.debug("CACHE_JOINED_INFLIGHT", key=key)
        return await asyncio.shield(task)

    async def _populate(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        try:
            value = await producer()
            self._entries[key] = CacheEntry(value=value, created_at=self._clock())
            if len(self._entries) > self.max_entries:
                self.purge_expired()
            return value
        finally:
            self._inflight.pop(key, None)

    def invalidate(self, key: str):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [k for k, e in self._entries.items() if not e.is_fresh(now, self.ttl)]
        for k in stale:
            del self._entries[k]
        if stale:
            log.debug("CACHE_PURGED", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
