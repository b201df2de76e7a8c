"""Shared fakes standing in for the BigQuery client and the key-value cache."""

from __future__ import annotations

from typing import Callable, Optional

import pandas as pd
import pytest

from sitestats import Settings, SiteStats


class _FakeResult:
    def __init__(self, df: pd.DataFrame) -> None:
        self._df = df

    def to_dataframe(self) -> pd.DataFrame:
        return self._df.copy()


class _FakeQueryJob:
    def __init__(self, df: pd.DataFrame) -> None:
        self._result = _FakeResult(df)

    def result(self) -> _FakeResult:
        return self._result


class FakeBigQueryClient:
    """Returns the frame produced by ``responder(sql)`` and records every call."""

    def __init__(self, responder: Optional[Callable[[str], pd.DataFrame]] = None) -> None:
        self.responder = responder or (lambda sql: pd.DataFrame())
        self.calls: list = []

    def query(self, sql: str, job_config=None):
        assert "SELECT" in sql and "FROM" in sql
        self.calls.append((sql, job_config))
        return _FakeQueryJob(self.responder(sql))


class FakeCache:
    """In-memory key-value cache recording TTLs."""

    def __init__(self) -> None:
        self.values: dict = {}
        self.ttls: dict = {}

    def get(self, key: str):
        return self.values.get(key)

    def set(self, key: str, value: str, ttl_seconds: int, only_if_absent: bool = False) -> bool:
        if only_if_absent and key in self.values:
            return False
        self.values[key] = value
        self.ttls[key] = ttl_seconds
        return True

    def count_keys(self, pattern: str) -> int:
        prefix, _, suffix = pattern.partition("*")
        return sum(1 for key in self.values if key.startswith(prefix) and key.endswith(suffix))


@pytest.fixture
def settings() -> Settings:
    return Settings(dataset_id="proj.dataset", redis_url=None, _env_file=None)


@pytest.fixture
def make_stats(settings: Settings) -> Callable[..., SiteStats]:
    def _make(responder=None, **kwargs) -> SiteStats:
        client = FakeBigQueryClient(responder)
        return SiteStats(settings=settings, client=client, **kwargs)

    return _make


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()
