"""Process-wide TTL cache for short-lived handshake tokens."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TokenCache:
    """Async TTL cache with an injectable monotonic clock.

    Concurrent ``get_or_fetch`` calls for the same key share one fetch.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def peek(self, key: str) -> str | None:
        """Return the cached value if it has not expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get_or_fetch(
        self,
        key: str,
        ttl: float,
        fetch: Callable[[], Awaitable[str]],
    ) -> str:
        """Return the cached value for ``key`` or fetch and cache it for ``ttl`` seconds."""
        cached = self.peek(key)
        if cached is not None:
            return cached

        async with self._get_lock(key):
            # Another task may have filled the entry while we waited
            cached = self.peek(key)
            if cached is not None:
                return cached

            logger.debug("Token cache miss for %s, fetching", key)
            value = await fetch()
            self._entries[key] = (value, self._clock() + ttl)
            return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


# Global cache instance
_cache: TokenCache | None = None


def get_token_cache() -> TokenCache:
    """Get the process-wide token cache."""
    global _cache
    if _cache is None:
        _cache = TokenCache()
    return _cache
