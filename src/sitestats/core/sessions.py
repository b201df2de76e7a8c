"""Session id derivation and TTL bound session bookkeeping in the cache."""

from __future__ import annotations

import hashlib

import structlog

from ..cache import KeyValueCache
from .errors import UpstreamQueryError

logger = structlog.get_logger(__name__)


def derive_session_id(pid: str, user_agent: str, ip: str, salt: str) -> str:
    """Return the session id for a visitor as a decimal string.

    The id is the first 8 bytes (big endian, unsigned) of the SHA-256 of
    ``user_agent + ip + pid + salt``.  Rotating ``salt`` starts new sessions.
    """

    digest = hashlib.sha256(f"{user_agent}{ip}{pid}{salt}".encode("utf-8")).digest()
    return str(int.from_bytes(digest[:8], "big", signed=False))


def session_key(psid: str) -> str:
    return f"ses:{psid}"


def session_duration_key(session_hash: str, pid: str) -> str:
    return f"sd:{session_hash}:{pid}"


def _touch(cache: KeyValueCache, key: str, value: str, ttl_seconds: int) -> bool:
    if cache.set(key, value, ttl_seconds, only_if_absent=True):
        return True
    cache.set(key, value, ttl_seconds)
    return False


def register_session(cache: KeyValueCache, psid: str, ttl_seconds: int) -> bool:
    """Mark ``psid`` as active and return whether it is a new session.

    Repeated calls only extend the TTL, so retries are harmless.
    """

    return _touch(cache, session_key(psid), "1", ttl_seconds)


def register_session_activity(cache: KeyValueCache, session_hash: str, pid: str, ttl_seconds: int) -> bool:
    """Keep the live visitor marker of a session alive for ``ttl_seconds``."""

    return _touch(cache, session_duration_key(session_hash, pid), "1", ttl_seconds)


def count_live_visitors(cache: KeyValueCache, pid: str) -> int:
    """Return the number of sessions of ``pid`` seen within the session TTL, ``0`` on cache failure."""

    try:
        return cache.count_keys(session_duration_key("*", pid))
    except UpstreamQueryError:
        logger.warning("live_visitors_unavailable", pid=pid)
        return 0


__all__ = [
    "count_live_visitors",
    "derive_session_id",
    "register_session",
    "register_session_activity",
    "session_duration_key",
    "session_key",
]
