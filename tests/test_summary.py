"""Unit tests for summary export loading (parse_metric, load_summary, persist_summary)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from nilgiri.exceptions import NilgiriOutputError, NilgiriSummaryError
from nilgiri.models import MetricKind
from nilgiri.summary import load_summary, parse_metric, parse_summary, persist_summary


def test_parse_metric_trend() -> None:
    m = parse_metric({"avg": 12.5, "min": 1, "med": 10, "max": 90, "p(90)": 40, "p(99.9)": 88})
    assert m.kind is MetricKind.TREND
    assert m.avg == 12.5
    assert m.percentile(90) == 40
    assert m.percentile("p(99.9)") == 88
    assert m.percentile(95) is None


def test_parse_metric_counter_rate_gauge() -> None:
    assert parse_metric({"count": 10, "rate": 2.5}).kind is MetricKind.COUNTER
    rate = parse_metric({"passes": 9, "fails": 1, "value": 0.9})
    assert rate.kind is MetricKind.RATE
    assert (rate.passes, rate.fails) == (9, 1)
    gauge = parse_metric({"value": 5, "min": 1, "max": 5})
    assert gauge.kind is MetricKind.GAUGE
    assert gauge.value == 5


def test_parse_metric_unknown_shape() -> None:
    m = parse_metric({"thresholds": {}})
    assert m.kind is MetricKind.UNKNOWN
    assert m.raw == {"thresholds": {}}


def test_parse_summary_known_metrics(summary_data: dict[str, Any]) -> None:
    model = parse_summary(summary_data)
    assert "http_req_duration" in model
    assert model.trend("http_req_duration").percentile(95) == 40
    assert model.counter("http_reqs").count == 200
    assert model.rate("checks").fails == 4
    assert model.gauge("vus").value == 10
    # Wrong-kind lookups return None instead of a misleading variant
    assert model.counter("http_req_duration") is None
    assert model.trend("missing") is None


def test_parse_summary_keeps_custom_metrics(summary_data: dict[str, Any]) -> None:
    summary_data["metrics"]["my_custom_trend"] = {"avg": 1, "min": 1, "med": 1, "max": 1}
    summary_data["metrics"]["broken"] = "not-an-object"
    model = parse_summary(summary_data)
    assert "my_custom_trend" in model
    assert "broken" not in model


def test_parse_summary_rejects_non_object() -> None:
    with pytest.raises(NilgiriSummaryError, match="must be a JSON object"):
        parse_summary([1, 2, 3])


def test_parse_summary_rejects_missing_metrics() -> None:
    with pytest.raises(NilgiriSummaryError, match="no \"metrics\" object"):
        parse_summary({"root_group": {}})


def test_load_summary_from_file(summary_file: Path) -> None:
    model = load_summary(summary_file)
    assert model.counter("iterations").count == 200
    assert model.names() == sorted(model.metrics)


def test_load_summary_missing_file(tmp_path: Path) -> None:
    with pytest.raises(NilgiriSummaryError, match="Summary export not found"):
        load_summary(tmp_path / "nope.json")


def test_load_summary_invalid_json(tmp_path: Path) -> None:
    p = tmp_path / "summary.json"
    p.write_text("{\"metrics\": {", encoding="utf-8")
    with pytest.raises(NilgiriSummaryError, match="not valid JSON"):
        load_summary(p)


def test_persist_summary_round_trips(tmp_path: Path, summary_file: Path, summary_data: dict[str, Any]) -> None:
    model = load_summary(summary_file)
    out = persist_summary(model, tmp_path / "nested" / "detailed.json")
    assert out.exists()
    text = out.read_text(encoding="utf-8")
    assert "\n  " in text  # pretty-printed
    assert json.loads(text) == summary_data
    assert load_summary(out) == model


def test_persist_summary_unwritable_path(tmp_path: Path, summary_file: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(NilgiriOutputError, match="Cannot write detailed JSON report"):
        persist_summary(load_summary(summary_file), blocker / "detailed.json")
