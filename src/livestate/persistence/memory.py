"""
LiveState Persistence Layer - Memory Cache

In-process TTL cache used as the shared and TTL layers of ephemeral storage
in single-process deployments, and in tests.
"""

import copy
import threading
import time
from typing import Any, Dict, Optional

from .base import CacheBackend


class MemoryCache(CacheBackend):
    """
    In-memory cache with optional per-entry expiry.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the cache.
    """

    def __init__(self, default_ttl: Optional[int] = None, clock=time.time):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._expiry: Dict[str, float] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        """Store value under key with optional TTL."""
        ttl = ttl if ttl is not None else self._default_ttl
        with self._lock:
            self._data[key] = copy.deepcopy(value)
            if ttl:
                self._expiry[key] = self._clock() + ttl
            else:
                self._expiry.pop(key, None)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the value for key, or None if absent or expired."""
        with self._lock:
            if key in self._expiry and self._clock() > self._expiry[key]:
                self._data.pop(key, None)
                self._expiry.pop(key, None)
                return None
            value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    def cleanup_expired(self) -> int:
        """Clean up expired entries."""
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, expires in self._expiry.items() if now > expires]
            for key in expired_keys:
                self._data.pop(key, None)
                self._expiry.pop(key, None)
        return len(expired_keys)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._data)
