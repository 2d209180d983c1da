"""
LiveState Persistence Layer - Redis Cache

Shared cache layer for multi-process deployments.
"""

import json
from typing import Any, Dict, Optional

import redis
from pydantic_core import to_jsonable_python

from .base import CacheBackend


class RedisCache(CacheBackend):
    """Cache layer backed by Redis, with native key expiry."""

    def __init__(self, client: "redis.Redis", prefix: str = "livestate:", default_ttl: Optional[int] = None):
        self.client = client
        self.prefix = prefix
        self._default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, **kwargs) -> 'RedisCache':
        return cls(redis.Redis.from_url(url), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        ttl = ttl if ttl is not None else self._default_ttl
        payload = json.dumps(to_jsonable_python(value))
        self.client.set(self._key(key), payload, ex=ttl or None)

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))
