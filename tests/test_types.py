from __future__ import annotations

import pytest
from google.cloud import bigquery

from sitestats import Settings
from sitestats.core.sql import table_ref, to_query_parameters
from sitestats.core.types import CompiledFilter


def test_compiled_filter_suffix() -> None:
    assert CompiledFilter().sql_suffix == ""
    assert CompiledFilter(predicate_text="(cc = @qf_0_0)").sql_suffix == " AND (cc = @qf_0_0)"


def test_query_parameters_are_typed_and_sorted() -> None:
    parameters = to_query_parameters({"take": 30, "pid": "site-1", "ratio": 0.5, "flag": True, "pages": ["/", "/a"]})

    assert [parameter.name for parameter in parameters] == ["flag", "pages", "pid", "ratio", "take"]
    assert [getattr(parameter, "type_", None) for parameter in parameters] == ["BOOL", None, "STRING", "FLOAT64", "INT64"]
    assert isinstance(parameters[1], bigquery.ArrayQueryParameter)
    assert parameters[1].values == ["/", "/a"]


def test_query_parameters_reject_unknown_types() -> None:
    with pytest.raises(TypeError):
        to_query_parameters({"pid": {"nested": True}})


def test_table_ref_rejects_injection() -> None:
    assert table_ref("proj.dataset", "analytics") == "`proj.dataset.analytics`"

    with pytest.raises(ValueError):
        table_ref("proj.dataset`; DROP TABLE x; --", "analytics")


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SITESTATS_DATASET_ID", "proj.analytics")
    monkeypatch.setenv("SITESTATS_FUNNEL_WINDOW_SECONDS", "3600")

    settings = Settings(_env_file=None)

    assert settings.dataset_id == "proj.analytics"
    assert settings.funnel_window_seconds == 3600
    assert settings.max_funnel_steps == 10
