from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    expires_at: float
    value: Any


class TTLCache:
    """Small in-process cache with an explicit TTL and explicit invalidation.

    Expired entries are kept until evicted so callers can fall back to stale data
    (see ``get_stale``) when a refresh fails.
    """

    def __init__(self, *, max_items: int = 5000, ttl_s: int = 86400, clock: Callable[[], float] = time.time) -> None:
        self._max_items = max(1, int(max_items or 1))
        self.ttl_s = max(1, int(ttl_s or 1))
        self._clock = clock
        self._items: dict[str, _Entry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._items.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            return None
        return entry.value

    def get_stale(self, key: str) -> Any | None:
        entry = self._items.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any) -> None:
        self._evict_if_needed()
        self._items[key] = _Entry(expires_at=self._clock() + self.ttl_s, value=value)

    def invalidate(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def _evict_if_needed(self) -> None:
        if len(self._items) < self._max_items:
            return
        now = self._clock()
        for k in list(self._items.keys()):
            if self._items.get(k) and self._items[k].expires_at <= now:
                self._items.pop(k, None)
        while len(self._items) >= self._max_items and self._items:
            self._items.pop(next(iter(self._items)), None)


class ProviderCatalog:
    """Process-wide cache of the avatar provider's avatar and voice lists."""

    AVATARS_KEY = "heygen:avatars"
    VOICES_KEY = "heygen:voices"

    def __init__(self, *, ttl_s: int = 3600, clock: Callable[[], float] = time.time) -> None:
        self.cache = TTLCache(max_items=16, ttl_s=ttl_s, clock=clock)
        self._lock = asyncio.Lock()

    async def avatars(self, fetch: Callable[[], Awaitable[list[dict]]]) -> list[dict]:
        return await self._get_or_fetch(self.AVATARS_KEY, fetch)

    async def voices(self, fetch: Callable[[], Awaitable[list[dict]]]) -> list[dict]:
        return await self._get_or_fetch(self.VOICES_KEY, fetch)

    def invalidate(self) -> None:
        self.cache.clear()
        logger.info("catalog.invalidated")

    async def _get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[list[dict]]]) -> list[dict]:
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        async with self._lock:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            try:
                fresh = await fetch()
            except Exception:
                stale = self.cache.get_stale(key)
                if stale is None:
                    raise
                logger.warning("catalog.refresh_failed key=%s serving=stale", key)
                return stale
            self.cache.set(key, fresh)
            logger.info("catalog.refreshed key=%s items=%s", key, len(fresh))
            return fresh
