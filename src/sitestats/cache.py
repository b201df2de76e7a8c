"""Key-value cache used for session bookkeeping."""

from __future__ import annotations

from typing import Optional, Protocol

import redis
import structlog

from .core.errors import UpstreamQueryError

__all__ = ["KeyValueCache", "RedisCache"]

logger = structlog.get_logger(__name__)


class KeyValueCache(Protocol):
    """Minimal cache interface. Implementations raise :class:`UpstreamQueryError` on failure."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int, only_if_absent: bool = False) -> bool:
        """Store ``value`` for ``ttl_seconds``; return ``False`` if ``only_if_absent`` and the key exists."""
        ...

    def count_keys(self, pattern: str) -> int: ...


class RedisCache:
    """:class:`KeyValueCache` backed by a synchronous ``redis.Redis`` client."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.from_url(url, db=0, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(key)
        except redis.RedisError as exc:
            logger.error("cache_get_failed", key=key, error=str(exc))
            raise UpstreamQueryError() from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl_seconds: int, only_if_absent: bool = False) -> bool:
        try:
            return bool(self.client.set(key, value, ex=ttl_seconds, nx=only_if_absent))
        except redis.RedisError as exc:
            logger.error("cache_set_failed", key=key, error=str(exc))
            raise UpstreamQueryError() from exc

    def count_keys(self, pattern: str) -> int:
        try:
            return sum(1 for _ in self.client.scan_iter(match=pattern, count=1000))
        except redis.RedisError as exc:
            logger.error("cache_scan_failed", pattern=pattern, error=str(exc))
            raise UpstreamQueryError() from exc
