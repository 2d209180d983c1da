"""
LiveState Persistence Layer - Base Classes

Abstract interfaces for state storage backends and the shared caches they
layer on top of.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Writes are serialized on a fixed set of locks; a key always maps to the same one.
LOCK_STRIPES = 64

# Owner id for states with scope=global; never expires with a session.
SHARED_SESSION_ID = "global"


def storage_key(session_id: str, name: str) -> str:
    """Key under which a state is stored for one session."""
    return f"{session_id}:{name}"


class StateStorage(ABC):
    """
    Abstract base class for state storage backends.

    Implementations store one JSON-compatible dict per (session, state name)
    and must be safe to share between concurrent requests. Concurrent saves to
    the same key are serialized through ``lock_for``; the last writer wins.
    """

    durable: bool = False

    def __init__(self):
        """Initialize storage backend with cleanup configuration."""
        self._cleanup_task: Optional[asyncio.Task] = None
        self._cleanup_interval: int = 300  # 5 minutes default
        self._auto_cleanup: bool = True
        self._running: bool = False
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    @abstractmethod
    def get(self, session_id: str, name: str) -> Dict[str, Any]:
        """
        Load the stored data for a state.

        Returns:
            The stored dict, or an empty dict when nothing is stored
        """
        pass

    @abstractmethod
    def save(self, session_id: str, name: str, data: Dict[str, Any]) -> None:
        """
        Store the data for a state, replacing what was there.

        Raises:
            PersistError: if the backend cannot write
        """
        pass

    @abstractmethod
    def delete(self, session_id: str, name: str) -> None:
        """Remove the stored data for a state."""
        pass

    @abstractmethod
    def delete_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        pass

    def lock_for(self, key: str) -> threading.Lock:
        """Write lock for a key."""
        return self._locks[hash(key) % len(self._locks)]

    def configure_cleanup(self, enabled: bool = True, interval: int = 300) -> None:
        """
        Configure automatic cleanup behavior.

        Args:
            enabled: Whether to enable automatic cleanup
            interval: Cleanup interval in seconds (default: 5 minutes)
        """
        self._auto_cleanup = enabled
        self._cleanup_interval = interval

        # Restart cleanup task if configuration changed and backend is running
        if self._running and self._cleanup_task:
            self.stop_cleanup()
            if enabled:
                self.start_cleanup()

    def start_cleanup(self) -> None:
        """Start the background cleanup task if auto_cleanup is enabled."""
        if not self._auto_cleanup or self._cleanup_task:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("%s: no running loop, cleanup not started", self.__class__.__name__)
            return
        self._cleanup_task = loop.create_task(self._cleanup_loop())
        self._running = True

    def stop_cleanup(self) -> None:
        """Stop the background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        self._running = False

    async def _cleanup_loop(self) -> None:
        """Internal cleanup loop that runs periodically."""
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                cleaned = self.delete_expired()
                if cleaned > 0:
                    logger.info("%s: cleaned up %d expired states", self.__class__.__name__, cleaned)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("%s: error during cleanup", self.__class__.__name__)


class CacheBackend(ABC):
    """Key/value cache with per-entry TTL used as a storage layer."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def cleanup_expired(self) -> int:
        """Drop expired entries. Backends with native expiry return 0."""
        return 0
