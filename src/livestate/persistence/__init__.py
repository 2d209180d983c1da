"""
LiveState Persistence Module

Storage backends for state data, one per persist mode, and the caches they
are layered on.
"""

from typing import Iterable

from .base import SHARED_SESSION_ID, StateStorage, CacheBackend, storage_key
from .memory import MemoryCache
from .redis_cache import RedisCache
from .ephemeral import EphemeralStorage
from .database import DatabaseStorage, StateRecord, SessionRecord, make_engine
from .client import ClientLocalStorage


def start_all_cleanup(backends: Iterable[StateStorage]) -> None:
    """Start cleanup tasks for the given backends."""
    for backend in backends:
        backend.start_cleanup()


def stop_all_cleanup(backends: Iterable[StateStorage]) -> None:
    """Stop cleanup tasks for the given backends."""
    for backend in backends:
        backend.stop_cleanup()


__all__ = [
    "StateStorage",
    "CacheBackend",
    "storage_key",
    "SHARED_SESSION_ID",
    "MemoryCache",
    "RedisCache",
    "EphemeralStorage",
    "DatabaseStorage",
    "StateRecord",
    "SessionRecord",
    "make_engine",
    "ClientLocalStorage",
    "start_all_cleanup",
    "stop_all_cleanup",
]
