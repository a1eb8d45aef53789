"""TTL cache for ESI detail lookups, keyed by (entity kind, id)."""

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Hashable, Optional

Key = tuple[str, Hashable]


class DetailCache:
    """
    In-memory cache of alliance/corporation details.

    Entries expire ``ttl`` seconds after they were stored; a ttl of 0
    disables caching entirely. Concurrent misses for the same key share one
    lookup instead of hitting ESI twice.
    """

    def __init__(self, ttl: int = 3600):
        self.ttl = ttl
        self._entries: dict[Key, tuple[Any, float]] = {}
        self._pending: dict[Key, asyncio.Future] = {}
        self._lock = threading.RLock()

    def get(self, kind: str, entity_id: Hashable) -> Optional[Any]:
        """Cached value, or None when missing or expired."""
        key = (kind, entity_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, kind: str, entity_id: Hashable, value: Any) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            self._entries[(kind, entity_id)] = (value, time.monotonic() + self.ttl)

    async def get_or_load(
        self,
        kind: str,
        entity_id: Hashable,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the cached value or await ``loader()`` and cache its result.

        Loader exceptions propagate and nothing is cached.
        """
        cached = self.get(kind, entity_id)
        if cached is not None:
            return cached

        key = (kind, entity_id)
        pending = self._pending.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            value = await loader()
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure does not log a warning.
            future.exception()
            raise
        else:
            future.set_result(value)
            self.put(kind, entity_id, value)
            return value
        finally:
            if not future.done():
                future.cancel()
            self._pending.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
