"""Query result cache backends.

The command layer only needs ``get``/``set``/``has``; anything satisfying
:class:`QueryCache` can be plugged into a connection.
"""

from __future__ import annotations

from typing import Optional, Protocol

import redis


class QueryCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: int) -> bool: ...

    def has(self, key: str) -> bool: ...


class RedisQueryCache:
    """Redis-backed cache storing serialized result envelopes.

    A ``ttl`` of 0 stores the value without expiry.
    """

    def __init__(self, client: redis.Redis):
        self.r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisQueryCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        value = self.r.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl: int) -> bool:
        return bool(self.r.set(key, value, ex=ttl if ttl > 0 else None))

    def has(self, key: str) -> bool:
        return bool(self.r.exists(key))
