from __future__ import annotations

import hashlib

import pytest
import redis
from structlog.testing import capture_logs

from sitestats.cache import RedisCache
from sitestats.core.errors import UpstreamQueryError
from sitestats.core.sessions import (
    count_live_visitors,
    derive_session_id,
    register_session,
    register_session_activity,
    session_duration_key,
)


class _FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.store: dict = {}
        self.calls: list = []

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("down")
        return self.store.get(key)

    def set(self, key, value, ex=None, nx=False):
        if self.fail:
            raise redis.ConnectionError("down")
        self.calls.append((key, value, ex, nx))
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def scan_iter(self, match=None, count=None):
        if self.fail:
            raise redis.ConnectionError("down")
        prefix, _, suffix = match.partition("*")
        return iter([key for key in self.store if key.startswith(prefix) and key.endswith(suffix)])


def test_derive_session_id_is_stable_and_salted() -> None:
    digest = hashlib.sha256(b"Mozilla/5.01.2.3.4site-1salt").digest()

    assert derive_session_id("site-1", "Mozilla/5.0", "1.2.3.4", "salt") == str(int.from_bytes(digest[:8], "big"))
    assert derive_session_id("site-1", "Mozilla/5.0", "1.2.3.4", "other") != derive_session_id(
        "site-1", "Mozilla/5.0", "1.2.3.4", "salt"
    )


def test_register_session_reports_new_sessions_once(cache) -> None:
    assert register_session(cache, "42", 1800)
    assert not register_session(cache, "42", 900)
    assert cache.ttls["ses:42"] == 900


def test_live_visitors_counts_active_sessions_of_project(cache) -> None:
    register_session_activity(cache, "1", "site-1", 1800)
    register_session_activity(cache, "2", "site-1", 1800)
    register_session_activity(cache, "3", "site-2", 1800)

    assert session_duration_key("1", "site-1") == "sd:1:site-1"
    assert count_live_visitors(cache, "site-1") == 2


def test_live_visitors_degrade_to_zero_when_cache_fails() -> None:
    cache = RedisCache(_FakeRedis(fail=True))

    with capture_logs() as logs:
        assert count_live_visitors(cache, "site-1") == 0

    assert [entry["event"] for entry in logs] == ["cache_scan_failed", "live_visitors_unavailable"]


def test_redis_cache_uses_expiry_and_nx() -> None:
    client = _FakeRedis()
    cache = RedisCache(client)

    assert cache.set("k", "v", 60, only_if_absent=True)
    assert not cache.set("k", "v", 60, only_if_absent=True)
    assert cache.get("k") == "v"
    assert client.calls[0] == ("k", "v", 60, True)


def test_redis_cache_wraps_errors() -> None:
    cache = RedisCache(_FakeRedis(fail=True))

    with pytest.raises(UpstreamQueryError):
        cache.get("k")


def test_client_register_session(make_stats, cache) -> None:
    stats = make_stats(cache=cache)

    is_new, psid = stats.register_session("site-1", "Mozilla/5.0", "1.2.3.4", "salt")
    again, same = stats.register_session("site-1", "Mozilla/5.0", "1.2.3.4", "salt")

    assert is_new and not again
    assert psid == same
    assert stats.live_visitors("site-1") == 1


def test_client_without_cache(make_stats) -> None:
    stats = make_stats()

    with pytest.raises(ValueError):
        stats.register_session("site-1", "ua", "ip", "salt")
    assert stats.live_visitors("site-1") == 0
