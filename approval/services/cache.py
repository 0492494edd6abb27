"""Lookaside cache for rule listings and chapter statistics."""
import logging
import threading
import time
from typing import Any, Callable, Hashable, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_MISSING = object()


class ApprovalCache:
    """
    Thread-safe TTL cache shared by the engine and the rule config service.

    Entries expire after ``ttl`` seconds; writers invalidate explicitly so
    expiry only bounds staleness from writes made by other processes.
    """

    def __init__(self, ttl: float = 300, maxsize: int = 1024,
                 timer: Optional[Callable[[], float]] = None):
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer or time.monotonic)
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            return self._cache.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def invalidate(self, prefix: Optional[str] = None) -> None:
        """Drop every entry, or only string keys starting with prefix."""
        with self._lock:
            if prefix is None:
                self._cache.clear()
                return
            for key in [k for k in self._cache.keys()
                        if isinstance(k, str) and k.startswith(prefix)]:
                self._cache.pop(key, None)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """Return the cached value, calling loader on a miss. Loader errors propagate."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            logger.debug(f"Cache hit: {key}")
            return value
        value = loader()
        self.set(key, value)
        return value

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
