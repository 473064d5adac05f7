"""
Cache backend contract and in-memory implementation.

Backends store opaque string values with a per-entry TTL. Expiry is checked
lazily on read; there is no background eviction.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from shared.logging import get_logger


class CacheBackend(ABC):
    """Key/value store used by the result cache."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns the count."""

    @abstractmethod
    async def delete_all(self) -> int:
        """Delete every key owned by this backend; returns the count."""

    async def start(self):
        """Open connections, if any."""

    async def stop(self):
        """Release connections, if any."""

    async def health_check(self) -> bool:
        return True


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend guarded by a lock.

    ``clock`` returns monotonic seconds and can be replaced in tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.logger = get_logger("policy_engine.cache.memory")
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        self.logger.debug("Deleted cache entries by prefix", prefix=prefix, count=len(keys))
        return len(keys)

    async def delete_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
