from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable, Hashable

from config import settings

logger = logging.getLogger(__name__)

CacheKey = tuple[str, int, tuple]


class QueryCache:
    """In-process read cache for owner-scoped list and derived views.

    Entries are keyed by ``(key, owner_id, params)``. Writers call
    :meth:`invalidate` for every key their entity kind feeds before the
    request completes, so a read after a write never sees stale rows.

    Each ``(key, owner_id)`` pair carries a generation that
    :meth:`invalidate` bumps. A load that started before an invalidation is
    returned to its caller but never stored.

    The cache lives in one process. Invalidations do not reach other
    processes, so the app runs under a single uvicorn worker.
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 2048) -> None:
        self._ttl = max(int(ttl_seconds), 1)
        self._max_entries = max(int(max_entries), 1)
        self._entries: dict[CacheKey, tuple[float, Any]] = {}
        self._generations: dict[tuple[str, int], int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    @staticmethod
    def _params_key(params: dict[str, Hashable] | None) -> tuple:
        return tuple(sorted((params or {}).items()))

    def _generation(self, key: str, owner: int) -> tuple[int, int]:
        return self._epoch, self._generations.get((key, owner), 0)

    def _evict_locked(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for k in expired:
            del self._entries[k]
        overflow = len(self._entries) - self._max_entries + 1
        if overflow > 0:
            oldest = sorted(self._entries, key=lambda k: self._entries[k][0])[:overflow]
            for k in oldest:
                del self._entries[k]
        if expired or overflow > 0:
            logger.debug("Evicted %s expired and %s overflow cache entr(ies)", len(expired), max(overflow, 0))

    def _store_locked(self, cache_key: CacheKey, value: Any, now: float) -> None:
        if cache_key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict_locked(now)
        self._entries[cache_key] = (now + self._ttl, copy.deepcopy(value))

    def get(self, key: str, owner_id: int, params: dict[str, Hashable] | None = None) -> tuple[bool, Any]:
        cache_key = (key, int(owner_id), self._params_key(params))
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                return False, None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[cache_key]
                return False, None
        return True, copy.deepcopy(value)

    def set(self, key: str, owner_id: int, value: Any, params: dict[str, Hashable] | None = None) -> None:
        cache_key = (key, int(owner_id), self._params_key(params))
        with self._lock:
            self._store_locked(cache_key, value, time.monotonic())

    def get_or_load(
        self,
        key: str,
        owner_id: int,
        loader: Callable[[], Any],
        params: dict[str, Hashable] | None = None,
    ) -> Any:
        owner = int(owner_id)
        hit, value = self.get(key, owner, params)
        if hit:
            return value
        with self._lock:
            started = self._generation(key, owner)
        value = loader()
        with self._lock:
            if self._generation(key, owner) != started:
                logger.debug("Skipped caching %s/%s: invalidated during load", key, owner)
                return value
            self._store_locked((key, owner, self._params_key(params)), value, time.monotonic())
        return value

    def invalidate(self, key: str, owner_id: int) -> int:
        owner = int(owner_id)
        with self._lock:
            self._generations[(key, owner)] = self._generations.get((key, owner), 0) + 1
            stale = [k for k in self._entries if k[0] == key and k[1] == owner]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Invalidated %s cached entr(ies) for %s/%s", len(stale), key, owner)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


query_cache = QueryCache(
    ttl_seconds=settings.QUERY_CACHE_TTL_SECONDS,
    max_entries=settings.QUERY_CACHE_MAX_ENTRIES,
)
