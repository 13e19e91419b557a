"""Generic in-process cache with per-entry expiry."""
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class ExpiringCache(Generic[V]):
    """
    Key -> (value, expiry) map shared by every caching site.

    Reads are cheap and writes never raise into the caller; a failed loader
    is logged and the caller gets None (or the stale value if one exists).
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            ttl_seconds: Lifetime of an entry
            max_entries: Oldest entries are evicted past this size
            clock: Time source, replaceable in tests
        """
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[V, float]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        # Expired entries stay until evicted so a failing loader can serve them
        if self._clock() >= expires_at:
            return None
        return value

    def set(self, key: Hashable, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Optional[V]]]
    ) -> Optional[V]:
        """
        Return the cached value, or await `loader` and cache its result.

        None results are not cached so the next call retries the loader.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        try:
            value = await loader()
        except Exception as e:
            logger.warning(f"Cache loader failed for key {key!r}: {e}")
            stale = self._entries.get(key)
            return stale[0] if stale else None

        if value is not None:
            self.set(key, value)
        return value

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries.items(), key=lambda item: item[1][1])[0]
            del self._entries[oldest]
