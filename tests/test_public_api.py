"""Tests for the public package API exports."""

from typing import get_args

import sitestats
from sitestats.core.types import DataType


def test_client_and_settings_are_exposed() -> None:
    """The client, its settings and the error base classes are importable from the package."""

    for name in ("SiteStats", "Settings", "AnalyticsError", "ValidationError", "UpstreamQueryError"):
        assert name in sitestats.__all__
        assert hasattr(sitestats, name)


def test_data_types() -> None:
    assert get_args(DataType) == ("analytics", "performance", "errors")


def test_validation_errors_are_value_errors() -> None:
    assert issubclass(sitestats.ValidationError, ValueError)
    assert not issubclass(sitestats.NotFoundError, sitestats.ValidationError)
