"""
LiveState Persistence Layer - Ephemeral Storage

Session-scoped storage for ``persist=session`` states. Reads fall through
three layers: a bounded process cache, a shared cache (memory or Redis) and a
TTL store. Saves write through all of them.
"""

import copy
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional

from ..errors import PersistError
from .base import CacheBackend, StateStorage, storage_key
from .memory import MemoryCache

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600  # 1 hour


class EphemeralStorage(StateStorage):
    """
    Layered session storage.

    Args:
        shared: Cache shared by all processes (default: in-process ``MemoryCache``)
        ttl_store: Last-resort store with expiry (default: in-process ``MemoryCache``)
        ttl: Expiry in seconds for the shared cache and TTL store
        process_cache_size: Entries kept in the process cache; 0 disables it
    """

    def __init__(
        self,
        shared: Optional[CacheBackend] = None,
        ttl_store: Optional[CacheBackend] = None,
        ttl: int = DEFAULT_TTL,
        process_cache_size: int = 1024,
    ):
        super().__init__()
        self.shared = shared if shared is not None else MemoryCache()
        self.ttl_store = ttl_store if ttl_store is not None else MemoryCache()
        self.ttl = ttl
        self.process_cache_size = process_cache_size
        self._process: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._process_lock = threading.Lock()

    def get(self, session_id: str, name: str) -> Dict[str, Any]:
        key = storage_key(session_id, name)

        cached = self._process_get(key)
        if cached is not None:
            return cached

        for layer in (self.shared, self.ttl_store):
            try:
                data = layer.get(key)
            except Exception:
                logger.warning("%s read failed for %s, treating as miss", type(layer).__name__, key, exc_info=True)
                continue
            if data is not None:
                self._process_put(key, data)
                return copy.deepcopy(data)

        return {}

    def save(self, session_id: str, name: str, data: Dict[str, Any]) -> None:
        key = storage_key(session_id, name)
        with self.lock_for(key):
            try:
                self.shared.set(key, data, self.ttl)
                self.ttl_store.set(key, data, self.ttl)
            except Exception as e:
                self._process_evict(key)
                raise PersistError(f"Failed to save state '{name}': {e}") from e
            self._process_put(key, data)

    def delete(self, session_id: str, name: str) -> None:
        key = storage_key(session_id, name)
        with self.lock_for(key):
            self._process_evict(key)
            try:
                self.shared.delete(key)
                self.ttl_store.delete(key)
            except Exception as e:
                raise PersistError(f"Failed to delete state '{name}': {e}") from e

    def delete_expired(self) -> int:
        # Process cache entries carry no expiry of their own; drop them so
        # expired entries below are not served from memory.
        cleaned = self.shared.cleanup_expired() + self.ttl_store.cleanup_expired()
        if cleaned:
            with self._process_lock:
                self._process.clear()
        return cleaned

    def _process_get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.process_cache_size:
            return None
        with self._process_lock:
            data = self._process.get(key)
            if data is None:
                return None
            self._process.move_to_end(key)
            return copy.deepcopy(data)

    def _process_evict(self, key: str) -> None:
        with self._process_lock:
            self._process.pop(key, None)

    def _process_put(self, key: str, data: Dict[str, Any]) -> None:
        if not self.process_cache_size:
            return
        with self._process_lock:
            self._process[key] = copy.deepcopy(data)
            self._process.move_to_end(key)
            while len(self._process) > self.process_cache_size:
                self._process.popitem(last=False)
